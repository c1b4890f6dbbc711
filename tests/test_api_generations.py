"""Tests for the generation endpoints."""

from __future__ import annotations

import pytest

from conftest import auth_headers
from imagestudio.api.generations import get_image_generator
from imagestudio.integrations.image_client import GeneratedImage, ImageGenerationAPIError
from imagestudio.main import app


class StubGenerator:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0

    async def generate(self, prompt, width, height, resolution, reference_images=None):
        self.calls += 1
        if self.fail:
            raise ImageGenerationAPIError("quota exceeded")
        return GeneratedImage(data=b"img", mime_type="image/png")


@pytest.fixture
def generator(client):
    stub = StubGenerator()
    app.dependency_overrides[get_image_generator] = lambda: stub
    return stub


async def _sign_in(client, sub: str = "user-1") -> None:
    response = await client.get("/api/v1/account", headers=auth_headers(sub))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_generate_single_image(client, generator):
    await _sign_in(client)

    response = await client.post(
        "/api/v1/generations",
        json={"prompt": "Welcome banner for HR site", "resolution": "2K"},
        headers=auth_headers(),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["image_balance"] == 1.0
    assert len(body["results"]) == 1
    assert body["results"][0]["status"] == "completed"
    assert body["results"][0]["cost"] == 1.0
    assert generator.calls == 1


@pytest.mark.asyncio
async def test_generate_without_credits_returns_402(client, generator):
    await _sign_in(client)
    headers = auth_headers()

    first = await client.post(
        "/api/v1/generations", json={"prompt": "p", "resolution": "4K"}, headers=headers,
    )
    second = await client.post(
        "/api/v1/generations", json={"prompt": "p", "resolution": "1K"}, headers=headers,
    )

    assert first.status_code == 201
    assert second.status_code == 402
    detail = second.json()["detail"]
    assert detail["upgrade_required"] is True
    assert detail["image_balance"] == 0.0
    assert generator.calls == 1


@pytest.mark.asyncio
async def test_partial_variations_return_201(client, generator):
    await _sign_in(client)

    response = await client.post(
        "/api/v1/generations",
        json={"prompt": "p", "resolution": "2K", "variations": 3},
        headers=auth_headers(),
    )

    assert response.status_code == 201
    statuses = sorted(r["status"] for r in response.json()["results"])
    assert statuses == ["completed", "completed", "upgrade_required"]
    assert response.json()["image_balance"] == 0.0


@pytest.mark.asyncio
async def test_failed_generation_still_charged(client):
    stub = StubGenerator(fail=True)
    app.dependency_overrides[get_image_generator] = lambda: stub
    await _sign_in(client)

    response = await client.post(
        "/api/v1/generations", json={"prompt": "p", "resolution": "1K"}, headers=auth_headers(),
    )

    assert response.status_code == 201
    result = response.json()["results"][0]
    assert result["status"] == "failed"
    assert result["error"] == "quota exceeded"
    assert response.json()["image_balance"] == 1.5


@pytest.mark.asyncio
async def test_generate_before_sign_in_returns_404(client, generator):
    response = await client.post(
        "/api/v1/generations", json={"prompt": "p"}, headers=auth_headers("never-seen"),
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_invalid_preset_returns_400(client, generator):
    await _sign_in(client)

    response = await client.post(
        "/api/v1/generations",
        json={"prompt": "p", "generation_type": "custom"},
        headers=auth_headers(),
    )

    assert response.status_code == 400
    assert generator.calls == 0


@pytest.mark.asyncio
async def test_request_validation(client, generator):
    await _sign_in(client)
    headers = auth_headers()

    bad_resolution = await client.post(
        "/api/v1/generations", json={"prompt": "p", "resolution": "8K"}, headers=headers,
    )
    too_many = await client.post(
        "/api/v1/generations", json={"prompt": "p", "variations": 5}, headers=headers,
    )

    assert bad_resolution.status_code == 422
    assert too_many.status_code == 422


@pytest.mark.asyncio
async def test_gallery_lists_own_generations(client, generator):
    await _sign_in(client, "user-1")
    await _sign_in(client, "user-2")
    await client.post(
        "/api/v1/generations", json={"prompt": "mine", "resolution": "1K"},
        headers=auth_headers("user-1"),
    )
    await client.post(
        "/api/v1/generations", json={"prompt": "theirs", "resolution": "1K"},
        headers=auth_headers("user-2"),
    )

    response = await client.get("/api/v1/generations", headers=auth_headers("user-1"))

    assert response.status_code == 200
    items = response.json()
    assert [i["prompt"] for i in items] == ["mine"]
    assert items[0]["status"] == "completed"
    assert items[0]["credit_cost"] == 0.5
    assert (items[0]["width"], items[0]["height"]) == (1920, 1080)
