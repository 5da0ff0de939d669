"""Contract tests for the payment configuration endpoints.

Secrets are write-only: no response may contain them.
"""

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from ordering.models.payment_config import ConnectionTestResult

TENANT_ID = "tenant-bistro"
STAFF = {"X-Tenant-ID": TENANT_ID, "X-Actor-Role": "staff"}
SECRET_KEY = "sk_test_very_secret_value"
WEBHOOK_SECRET = "whsec_very_secret_value"


@pytest.fixture
def client(dynamodb_tables) -> TestClient:
    from ordering_api.main import app

    return TestClient(app)


def _put_config(client: TestClient, provider: str = "stripe", **extra) -> dict:
    response = client.put(
        f"/api/payment-configs/{provider}",
        json={"secret_key": SECRET_KEY, "webhook_secret": WEBHOOK_SECRET, **extra},
        headers=STAFF,
    )
    assert response.status_code == 200
    return response.json()


class TestSaveConfig:
    def test_response_never_contains_secrets(self, client: TestClient) -> None:
        response = client.put(
            "/api/payment-configs/stripe",
            json={
                "secret_key": SECRET_KEY,
                "webhook_secret": WEBHOOK_SECRET,
                "public_key": "pk_test_public",
            },
            headers=STAFF,
        )

        assert response.status_code == 200
        assert SECRET_KEY not in response.text
        assert WEBHOOK_SECRET not in response.text
        data = response.json()
        assert data["provider"] == "STRIPE"
        assert data["has_secret_key"] is True
        assert data["has_webhook_secret"] is True
        assert data["public_key"] == "pk_test_public"
        assert data["is_active"] is True

    def test_square_metadata(self, client: TestClient) -> None:
        data = _put_config(client, "square", metadata={"location_id": "LOC123"})

        assert data["provider"] == "SQUARE"
        assert data["metadata"] == {"location_id": "LOC123"}

    def test_requires_staff(self, client: TestClient) -> None:
        response = client.put(
            "/api/payment-configs/stripe",
            json={"secret_key": SECRET_KEY},
            headers={"X-Tenant-ID": TENANT_ID},
        )

        assert response.status_code == 403

    def test_unsupported_provider(self, client: TestClient) -> None:
        response = client.put(
            "/api/payment-configs/paypal", json={"secret_key": SECRET_KEY}, headers=STAFF
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "ERR_UNSUPPORTED_PROVIDER"

    def test_secret_key_required(self, client: TestClient) -> None:
        response = client.put("/api/payment-configs/stripe", json={}, headers=STAFF)

        assert response.status_code == 400
        assert response.json()["error_code"] == "ERR_VALIDATION"


class TestReadConfig:
    def test_get_summary(self, client: TestClient) -> None:
        _put_config(client)

        response = client.get("/api/payment-configs/stripe", headers=STAFF)

        assert response.status_code == 200
        assert SECRET_KEY not in response.text
        assert response.json()["has_webhook_secret"] is True

    def test_get_missing(self, client: TestClient) -> None:
        response = client.get("/api/payment-configs/stripe", headers=STAFF)

        assert response.status_code == 404
        assert response.json()["error_code"] == "ERR_CONFIG_NOT_FOUND"

    def test_other_tenant_cannot_see_config(self, client: TestClient) -> None:
        _put_config(client)

        response = client.get(
            "/api/payment-configs/stripe",
            headers={"X-Tenant-ID": "tenant-other", "X-Actor-Role": "staff"},
        )

        assert response.status_code == 404


class TestConnection:
    def test_connection_result(self, client: TestClient) -> None:
        _put_config(client)
        adapter = MagicMock()
        adapter.test_connection.return_value = ConnectionTestResult(success=True)

        with patch(
            "ordering.services.payment_config_service.get_provider_adapter",
            return_value=adapter,
        ) as factory:
            response = client.post("/api/payment-configs/stripe/test", headers=STAFF)

        assert response.status_code == 200
        assert response.json() == {"success": True, "error": None}
        credentials = factory.call_args.args[1]
        assert credentials.secret_key.get_secret_value() == SECRET_KEY

    def test_connection_without_config(self, client: TestClient) -> None:
        response = client.post("/api/payment-configs/stripe/test", headers=STAFF)

        assert response.status_code == 400
        assert response.json()["error_code"] == "ERR_PAYMENT_NOT_CONFIGURED"
