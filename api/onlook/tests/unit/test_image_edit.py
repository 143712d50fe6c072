"""Unit tests for the image edit client."""

import asyncio
import base64

import httpx
import pytest

from onlook.models.exceptions import GenerationFailedException
from onlook.services.image_codec import ImagePayload
from onlook.services.image_edit import ImageEditClient
from onlook.services.prompts import TRY_ON_PROMPT
from onlook.tests.mocks.fakes import JPEG_BYTES, PNG_BYTES

PERSON = ImagePayload(mime="image/jpeg", data=JPEG_BYTES)
GARMENT = ImagePayload(mime="image/png", data=PNG_BYTES)


def make_client(handler, **kwargs) -> ImageEditClient:
    kwargs.setdefault("api_key", "sk-test")
    kwargs.setdefault("base_url", "https://images.example.com/v1")
    return ImageEditClient(transport=httpx.MockTransport(handler), **kwargs)


def b64_response(data: bytes = PNG_BYTES) -> httpx.Response:
    return httpx.Response(200, json={"data": [{"b64_json": base64.b64encode(data).decode()}]})


class TestImageEditRequest:
    """Test cases for the outgoing request."""

    async def test_posts_multipart_with_both_images(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            request.read()
            seen.append(request)
            return b64_response()

        result = await make_client(handler).edit(PERSON, GARMENT)

        assert result == PNG_BYTES
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "https://images.example.com/v1/images/edits"
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert request.headers["Content-Type"].startswith("multipart/form-data")
        body = request.content
        assert body.count(b'name="image[]"') == 2
        assert body.index(b'filename="person.jpg"') < body.index(b'filename="product.png"')
        assert b"gpt-image-1.5" in body
        assert b"1024x1536" in body
        assert TRY_ON_PROMPT.encode()[:40] in body

    @pytest.mark.parametrize("aspect_ratio,size", [
        ("square", b"1024x1024"),
        ("landscape", b"1536x1024"),
        ("portrait", b"1024x1536"),
        (None, b"1024x1536"),
    ])
    async def test_size_follows_aspect_ratio(self, aspect_ratio, size):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.read())
            return b64_response()

        await make_client(handler).edit(PERSON, GARMENT, aspect_ratio)

        assert size in bodies[0]

    async def test_missing_api_key_fails_without_calling(self):
        calls = []

        def handler(request):
            calls.append(request)
            return b64_response()

        with pytest.raises(GenerationFailedException, match="API key"):
            await make_client(handler, api_key=None).edit(PERSON, GARMENT)

        assert calls == []

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            ImageEditClient(api_key="sk-test", max_concurrency=0)


class TestImageEditResponse:
    """Test cases for response handling."""

    async def test_fetches_url_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"data": [{"url": "https://files.example.com/out.png"}]})
            assert str(request.url) == "https://files.example.com/out.png"
            return httpx.Response(200, content=PNG_BYTES)

        result = await make_client(handler).edit(PERSON, GARMENT)

        assert result == PNG_BYTES

    async def test_blocks_plain_http_result_url(self):
        def handler(request):
            return httpx.Response(200, json={"data": [{"url": "http://169.254.169.254/latest"}]})

        with pytest.raises(GenerationFailedException, match="non-HTTPS"):
            await make_client(handler).edit(PERSON, GARMENT)

    async def test_blocks_hosts_outside_allowlist(self):
        def handler(request):
            return httpx.Response(200, json={"data": [{"url": "https://evil.example.net/out.png"}]})

        with pytest.raises(GenerationFailedException, match="evil.example.net"):
            await make_client(handler, allow_hosts="files.example.com").edit(PERSON, GARMENT)

    async def test_oversized_fetch_fails(self):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(200, json={"data": [{"url": "https://files.example.com/out.png"}]})
            return httpx.Response(200, content=b"x" * 64)

        with pytest.raises(GenerationFailedException, match="too large"):
            await make_client(handler, max_fetch_bytes=16).edit(PERSON, GARMENT)

    async def test_error_body(self):
        def handler(request):
            return httpx.Response(200, json={"error": {"message": "content policy violation"}})

        with pytest.raises(GenerationFailedException, match="content policy violation") as exc_info:
            await make_client(handler).edit(PERSON, GARMENT)

        assert exc_info.value.details["provider"] == "openai"
        assert exc_info.value.details["model"] == "gpt-image-1.5"

    @pytest.mark.parametrize("payload", [{"data": []}, {"data": [{}]}, {}])
    async def test_no_image_data(self, payload):
        def handler(request):
            return httpx.Response(200, json=payload)

        with pytest.raises(GenerationFailedException, match="No image data"):
            await make_client(handler).edit(PERSON, GARMENT)

    async def test_http_error_status(self):
        def handler(request):
            return httpx.Response(500, text="upstream exploded")

        with pytest.raises(GenerationFailedException, match="HTTP error 500"):
            await make_client(handler).edit(PERSON, GARMENT)

    async def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>gateway</html>")

        with pytest.raises(GenerationFailedException, match="Invalid JSON"):
            await make_client(handler).edit(PERSON, GARMENT)

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GenerationFailedException, match="request failed"):
            await make_client(handler).edit(PERSON, GARMENT)


class TestImageEditLimits:
    """Test cases for the timeout and the concurrency bound."""

    async def test_total_timeout(self):
        async def handler(request):
            await asyncio.sleep(1)
            return b64_response()

        client = make_client(handler, timeout_seconds=0.05)

        with pytest.raises(GenerationFailedException, match="timed out after 0.05s"):
            await client.edit(PERSON, GARMENT)

        assert client.in_flight == 0

    async def test_in_flight_never_exceeds_bound(self):
        peak = []
        client = None

        async def handler(request):
            peak.append(client.in_flight)
            await asyncio.sleep(0.01)
            return b64_response()

        client = make_client(handler, max_concurrency=2)

        results = await asyncio.gather(*(client.edit(PERSON, GARMENT) for _ in range(6)))

        assert results == [PNG_BYTES] * 6
        assert max(peak) == 2
        assert client.in_flight == 0

    async def test_failures_release_slots(self):
        def handler(request):
            return httpx.Response(503, text="busy")

        client = make_client(handler, max_concurrency=1)

        for _ in range(3):
            with pytest.raises(GenerationFailedException):
                await client.edit(PERSON, GARMENT)

        assert client.in_flight == 0

    async def test_waiters_are_served_in_arrival_order(self):
        finished = []

        async def handler(request):
            await asyncio.sleep(0.005)
            return b64_response()

        client = make_client(handler, max_concurrency=1)

        async def edit(index):
            await client.edit(PERSON, GARMENT)
            finished.append(index)

        tasks = []
        for index in range(8):
            tasks.append(asyncio.create_task(edit(index)))
            await asyncio.sleep(0)
        await asyncio.gather(*tasks)

        assert finished == list(range(8))
        assert client.in_flight == 0
