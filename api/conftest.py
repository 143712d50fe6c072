"""Pytest configuration and fixtures for the Onlook API."""

import os
import sys
import tempfile
from pathlib import Path
from typing import Generator

# Settings are read at import time, so the environment goes first
os.environ.setdefault("SERVICE_ENV", "test")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOCAL_STORAGE_DIR", os.path.join(tempfile.gettempdir(), "onlook-test-storage"))
os.environ.setdefault("LOG_LEVEL", "DEBUG")

# Add the api directory to Python path
api_dir = Path(__file__).parent
sys.path.insert(0, str(api_dir))

import pytest
from fastapi.testclient import TestClient

from onlook.core.security import AuthenticatedUser
from onlook.main import app
from onlook.services.audit import GenerationAuditLog
from onlook.services.generation_service import TryOnGenerationService, get_generation_service
from onlook.services.image_codec import encode_data_url
from onlook.services.publisher import ResultPublisher
from onlook.tests.mocks.fakes import (
    FakeIdentityVerifier,
    FakeImageClient,
    InMemoryAuditStore,
    InMemoryCreditLedger,
    InMemoryStorage,
    JPEG_BYTES,
    PNG_BYTES,
)

TEST_TOKEN = "test-session-token"
TEST_USER = AuthenticatedUser(user_id="9b2f6c1e-user", email="jane@example.com")


@pytest.fixture
def user() -> AuthenticatedUser:
    return TEST_USER


@pytest.fixture
def verifier() -> FakeIdentityVerifier:
    return FakeIdentityVerifier({TEST_TOKEN: TEST_USER})


@pytest.fixture
def ledger() -> InMemoryCreditLedger:
    """One credit for the test user unless a test says otherwise."""
    return InMemoryCreditLedger({TEST_USER.user_id: 1})


@pytest.fixture
def image_client() -> FakeImageClient:
    return FakeImageClient()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def audit_store() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
def service(verifier, ledger, image_client, storage, audit_store) -> TryOnGenerationService:
    return TryOnGenerationService(
        verifier=verifier,
        ledger=ledger,
        image_client=image_client,
        publisher=ResultPublisher(storage),
        audit_log=GenerationAuditLog(audit_store),
    )


@pytest.fixture
def client(service) -> Generator[TestClient, None, None]:
    """Test client wired to the in-memory service."""
    app.dependency_overrides[get_generation_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TEST_TOKEN}"}


@pytest.fixture
def person_data_url() -> str:
    return encode_data_url("image/jpeg", JPEG_BYTES)


@pytest.fixture
def garment_data_url() -> str:
    return encode_data_url("image/png", PNG_BYTES)


@pytest.fixture
def generate_body(person_data_url, garment_data_url):
    """Request body as the mobile client sends it."""
    return {
        "userEmail": TEST_USER.email,
        "baseImage": person_data_url,
        "productImage": garment_data_url,
        "promptMode": "standard",
        "aspectRatio": "portrait",
    }
