"""Domain exceptions for the accounting subsystem.

Structural outcomes (insufficient balance, duplicate webhook event) are
return values, not exceptions; these are for the hard failures.
"""

from __future__ import annotations


class AccountNotFound(Exception):
    """No ledger row exists for the given account id."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"Account {user_id!r} not found")
        self.user_id = user_id


class AccountAlreadyExists(Exception):
    """A ledger row already exists for the given account id."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"Account {user_id!r} already exists")
        self.user_id = user_id


class SignatureVerificationFailure(Exception):
    """The webhook request could not be authenticated."""


class MalformedWebhookPayload(Exception):
    """An authentic webhook event is missing data it must carry."""


class UnhandledEventType(Exception):
    """The payment provider sent an event type with no handler."""

    def __init__(self, event_type: str) -> None:
        super().__init__(f"Unhandled event type: {event_type}")
        self.event_type = event_type


class UpstreamProviderError(Exception):
    """The payment provider rejected a session-creation request."""


class NoCustomer(Exception):
    """The account has no bound payment customer."""
