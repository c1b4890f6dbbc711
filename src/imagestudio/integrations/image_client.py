"""Async client for the hosted image-generation model (Gemini image API).

Uses httpx.AsyncClient against ``models/{model}:generateContent``.  The model
answers synchronously with the image inline as base64; there is no polling.
To the accounting code this is an opaque call that either returns image bytes
or raises an ImageGenerationError.
"""

from __future__ import annotations

import base64
import binascii
import io
import re
from dataclasses import dataclass
from math import gcd
from typing import Any

import httpx
from PIL import Image, UnidentifiedImageError

from imagestudio.config import settings


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GeneratedImage:
    """Decoded image returned by the model."""

    data: bytes
    mime_type: str

    @property
    def extension(self) -> str:
        return {"image/jpeg": "jpg", "image/webp": "webp"}.get(self.mime_type, "png")


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------

class ImageGenerationError(Exception):
    """Base class for any failed generation call."""


class ImageGenerationTimeoutError(ImageGenerationError):
    """Raised when the request exceeds its time budget."""


class ImageGenerationConnectionError(ImageGenerationError):
    """Raised when the API host is unreachable."""


class ImageGenerationAPIError(ImageGenerationError):
    """Raised when the API answers with a non-2xx status."""


class ImageGenerationMalformedResponseError(ImageGenerationError):
    """Raised when the response holds no decodable image."""


_DATA_URL = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)


# ---------------------------------------------------------------------------
# ImageClient
# ---------------------------------------------------------------------------

class ImageClient:
    """Async client for one-shot text(+reference images)-to-image calls."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float = 180.0,
    ):
        self.base_url = (base_url or settings.IMAGE_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.IMAGE_API_KEY
        self.model = model or settings.IMAGE_MODEL
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        prompt: str,
        width: int,
        height: int,
        resolution: str,
        reference_images: list[str] | None = None,
    ) -> GeneratedImage:
        """Generate one image.

        *reference_images* are ``data:<mime>;base64,<data>`` URLs; entries in
        any other form are ignored.

        Raises:
            ImageGenerationTimeoutError: on request timeout.
            ImageGenerationConnectionError: on connection failure.
            ImageGenerationAPIError: on a non-2xx response.
            ImageGenerationMalformedResponseError: when no image comes back.
        """
        if not self.api_key:
            raise ImageGenerationError("IMAGE_API_KEY is not configured")

        payload = self._build_request(prompt, width, height, resolution, reference_images)

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
            ) as client:
                response = await client.post(
                    f"/models/{self.model}:generateContent",
                    params={"key": self.api_key},
                    json=payload,
                )
        except httpx.TimeoutException as exc:
            raise ImageGenerationTimeoutError(
                f"Image request timed out after {self.timeout}s"
            ) from exc
        except httpx.ConnectError as exc:
            raise ImageGenerationConnectionError(
                f"Cannot connect to image API at {self.base_url}"
            ) from exc

        if response.is_error:
            raise ImageGenerationAPIError(self._error_message(response))

        try:
            body = response.json()
        except ValueError as exc:
            raise ImageGenerationMalformedResponseError("Response is not JSON") from exc
        return self._parse_response(body)

    # ------------------------------------------------------------------
    # Request / response helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _aspect_ratio(width: int, height: int) -> str:
        divisor = gcd(width, height) or 1
        return f"{width // divisor}:{height // divisor}"

    def _build_request(
        self,
        prompt: str,
        width: int,
        height: int,
        resolution: str,
        reference_images: list[str] | None,
    ) -> dict[str, Any]:
        """Reference images go first, then the prompt text, unmodified."""
        parts: list[dict[str, Any]] = []
        for ref in reference_images or []:
            match = _DATA_URL.match(ref)
            if match:
                parts.append({
                    "inlineData": {"mimeType": match.group(1), "data": match.group(2)},
                })
        parts.append({"text": prompt})

        return {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "responseModalities": ["IMAGE"],
                "imageConfig": {
                    "aspectRatio": self._aspect_ratio(width, height),
                    "imageSize": resolution,
                },
            },
        }

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            detail = response.json().get("error", {}).get("message")
        except (ValueError, AttributeError):
            detail = None
        return detail or f"API Error: {response.status_code} - {response.text[:200]}"

    @staticmethod
    def _parse_response(data: dict) -> GeneratedImage:
        """Pull the first inline image out of the first candidate."""
        candidates = data.get("candidates") if isinstance(data, dict) else None
        if not candidates:
            raise ImageGenerationMalformedResponseError("Response has no candidates")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        for part in parts:
            inline = part.get("inlineData") or {}
            mime_type = inline.get("mimeType", "")
            if not mime_type.startswith("image/"):
                continue
            try:
                raw = base64.b64decode(inline.get("data", ""), validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ImageGenerationMalformedResponseError(
                    "Inline image is not valid base64"
                ) from exc
            _verify_image(raw)
            return GeneratedImage(data=raw, mime_type=mime_type)

        raise ImageGenerationMalformedResponseError("No image found in response")


def _verify_image(raw: bytes) -> None:
    """Raise unless *raw* decodes as an image Pillow recognises."""
    try:
        with Image.open(io.BytesIO(raw)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise ImageGenerationMalformedResponseError(
            "Returned data is not a readable image"
        ) from exc
