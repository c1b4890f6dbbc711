"""ORM models package -- re-exports all models and the Base class."""

from imagestudio.models.base import Base
from imagestudio.models.account import GenerationRecord, UserAccount
from imagestudio.models.webhook import ProcessedWebhookEvent

__all__ = [
    "Base",
    "UserAccount",
    "GenerationRecord",
    "ProcessedWebhookEvent",
]
