"""Client for the external image edit provider.

Sends the person photo, the garment photo and the fixed try-on prompt to an
OpenAI-compatible ``/images/edits`` endpoint and returns the raw bytes of the
composited image. Calls are bounded by a per-client semaphore so that at
most ``max_concurrency`` requests are in flight at once; the rest wait
their turn.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from ..core.config import settings
from ..models.exceptions import GenerationFailedException
from .image_codec import ImagePayload
from .prompts import TRY_ON_PROMPT, size_for_aspect_ratio

logger = logging.getLogger(__name__)


class ImageEditClient:
    """Bounded, single-attempt image edit calls."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-image-1.5",
        provider: str = "openai",
        max_concurrency: int = 5,
        timeout_seconds: float = 180.0,
        allow_hosts: Optional[str] = None,
        max_fetch_bytes: int = 20_000_000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.provider = provider
        self.max_concurrency = max_concurrency
        self.timeout_seconds = timeout_seconds
        self.allow_hosts = {h.strip() for h in (allow_hosts or "").split(",") if h.strip()}
        self.max_fetch_bytes = max_fetch_bytes
        self._transport = transport
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self.in_flight = 0

    @classmethod
    def from_settings(cls) -> "ImageEditClient":
        return cls(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            model=settings.image_edit_model,
            provider=settings.image_edit_provider,
            max_concurrency=settings.image_edit_max_concurrency,
            timeout_seconds=settings.image_edit_timeout_seconds,
            allow_hosts=settings.image_fetch_allow_hosts,
            max_fetch_bytes=settings.image_fetch_max_bytes,
        )

    def _failure(self, message: str, **details: Any) -> GenerationFailedException:
        return GenerationFailedException(message, provider=self.provider, model=self.model, details=details or None)

    async def edit(self, person: ImagePayload, garment: ImagePayload, aspect_ratio: Optional[str] = None) -> bytes:
        """Composite ``garment`` onto ``person`` and return the image bytes.

        Raises:
            GenerationFailedException: on timeout, HTTP errors, unreadable
                responses or responses without image data.
        """
        size = size_for_aspect_ratio(aspect_ratio)
        async with self._semaphore:
            self.in_flight += 1
            start = time.time()
            try:
                return await asyncio.wait_for(self._edit(person, garment, size), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                raise self._failure(f"Image edit timed out after {self.timeout_seconds:g}s")
            finally:
                self.in_flight -= 1
                logger.info(
                    "Image edit call finished",
                    extra={"provider": self.provider, "model": self.model, "size": size,
                           "duration_ms": int((time.time() - start) * 1000)},
                )

    async def _edit(self, person: ImagePayload, garment: ImagePayload, size: str) -> bytes:
        if not self.api_key:
            raise self._failure("Image edit provider API key is not configured")

        # Order matters: the prompt refers to the person as Image 1 and the
        # clothing as Image 2.
        files = [
            ("image[]", (f"person.{person.extension}", person.data, person.mime)),
            ("image[]", (f"product.{garment.extension}", garment.data, garment.mime)),
        ]
        data = {"model": self.model, "prompt": TRY_ON_PROMPT, "size": size}

        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds), transport=self._transport) as client:
            try:
                resp = await client.post(
                    f"{self.base_url}/images/edits",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    data=data,
                    files=files,
                )
                resp.raise_for_status()
            except httpx.HTTPStatusError as e:
                error_text = e.response.text[:500] if e.response is not None else str(e)
                raise self._failure(f"Image edit API HTTP error {e.response.status_code}: {error_text}")
            except httpx.TimeoutException:
                raise self._failure("Image edit request timed out")
            except httpx.HTTPError as e:
                raise self._failure(f"Image edit request failed: {str(e)}")

            try:
                body = resp.json()
            except ValueError as e:
                raise self._failure(f"Invalid JSON response from image edit API: {e}")

            return await self._extract_image(client, body)

    async def _extract_image(self, client: httpx.AsyncClient, body: Any) -> bytes:
        if not isinstance(body, dict):
            raise self._failure(f"Invalid response format from image edit API: {type(body).__name__}")
        if "error" in body:
            error = body.get("error") or {}
            message = error.get("message", "Unknown error") if isinstance(error, dict) else str(error)
            raise self._failure(f"Image edit API error: {message}")

        items: List[Dict[str, Any]] = [it for it in (body.get("data") or []) if isinstance(it, dict)]
        if not items:
            raise self._failure("No image data (b64 or url) returned from image edit API")
        item = items[0]

        b64 = item.get("b64_json")
        if b64:
            try:
                return base64.b64decode(b64, validate=True)
            except (binascii.Error, ValueError) as e:
                raise self._failure(f"Failed to decode base64 image data: {e}")

        url = item.get("url")
        if url:
            return await self._fetch(client, url)

        raise self._failure("No image data (b64 or url) returned from image edit API")

    def _ssrf_guard(self, url: str) -> None:
        u = urlparse(url)
        if u.scheme != "https":
            raise self._failure("Blocked non-HTTPS image URL")
        if self.allow_hosts and u.hostname not in self.allow_hosts:
            raise self._failure(f"Blocked external host: {u.hostname}")

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> bytes:
        self._ssrf_guard(url)
        try:
            async with client.stream("GET", url) as r:
                r.raise_for_status()
                total = 0
                chunks: List[bytes] = []
                async for chunk in r.aiter_bytes():
                    total += len(chunk)
                    if total > self.max_fetch_bytes:
                        raise self._failure("Image too large")
                    chunks.append(chunk)
        except httpx.HTTPStatusError as e:
            raise self._failure(f"Fetching generated image failed with HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            raise self._failure(f"Fetching generated image failed: {str(e)}")
        data = b"".join(chunks)
        if not data:
            raise self._failure("Generated image URL returned an empty body")
        return data
