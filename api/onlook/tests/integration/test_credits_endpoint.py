"""Integration tests for GET /credits and GET /generations."""

from datetime import datetime, timedelta, timezone

import pytest

from onlook.core.config import settings
from onlook.models.records import GenerationRecord, GenerationStatus


class TestCreditsEndpoint:
    """Test cases for the balance endpoint."""

    def test_balance(self, client, auth_headers, ledger, user):
        ledger.balances[user.user_id] = 12

        response = client.get("/credits", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"credits": 12}

    def test_new_user_has_zero(self, client, auth_headers, ledger, user):
        del ledger.balances[user.user_id]

        response = client.get("/credits", headers=auth_headers)

        assert response.json() == {"credits": 0}

    def test_reading_does_not_change_balance(self, client, auth_headers, ledger, user):
        client.get("/credits", headers=auth_headers)
        client.get("/credits", headers=auth_headers)

        assert ledger.balances[user.user_id] == 1
        assert ledger.consume_calls == 0

    def test_unauthorized(self, client):
        response = client.get("/credits", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    def test_ledger_unavailable(self, client, auth_headers, ledger, monkeypatch):
        monkeypatch.setattr(settings, "credits_fallback_zero", False)
        ledger.fail_reads = True

        response = client.get("/credits", headers=auth_headers)

        assert response.status_code == 503
        assert response.json()["error"] == "ledger_unavailable"

    def test_ledger_unavailable_zero_fallback(self, client, auth_headers, ledger, monkeypatch):
        monkeypatch.setattr(settings, "credits_fallback_zero", True)
        ledger.fail_reads = True

        response = client.get("/credits", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"credits": 0, "error": "Credit balance is temporarily unavailable"}

    def test_balance_reflects_generation(self, client, auth_headers, generate_body):
        client.post("/generate", json=generate_body, headers=auth_headers)

        response = client.get("/credits", headers=auth_headers)

        assert response.json() == {"credits": 0}


class TestGenerationsEndpoint:
    """Test cases for the history endpoint."""

    @pytest.fixture
    def history(self, audit_store, user):
        now = datetime.now(timezone.utc)
        for minutes, status, url in [
            (30, GenerationStatus.SUCCESS, "https://cdn.example.com/onlook_public/old.png"),
            (20, GenerationStatus.FAILED, None),
            (10, GenerationStatus.SUCCESS, "https://cdn.example.com/onlook_public/new.png"),
        ]:
            audit_store.insert(GenerationRecord(
                user_email=user.email,
                status=status,
                cost_in_credits=1 if status == GenerationStatus.SUCCESS else 0,
                provider="openai",
                model="gpt-image-1.5",
                duration_ms=900,
                image_url=url,
                created_at=now - timedelta(minutes=minutes),
            ))

    def test_lists_successes_newest_first(self, client, auth_headers, history):
        response = client.get("/generations", headers=auth_headers)

        assert response.status_code == 200
        items = response.json()["generations"]
        assert [item["image_url"] for item in items] == [
            "https://cdn.example.com/onlook_public/new.png",
            "https://cdn.example.com/onlook_public/old.png",
        ]
        assert {item["status"] for item in items} == {"success"}

    def test_limit(self, client, auth_headers, history):
        response = client.get("/generations", params={"limit": 1}, headers=auth_headers)

        assert len(response.json()["generations"]) == 1

    def test_limit_out_of_range(self, client, auth_headers):
        response = client.get("/generations", params={"limit": 0}, headers=auth_headers)

        assert response.status_code == 400

    def test_unauthorized(self, client):
        response = client.get("/generations")

        assert response.status_code == 401
