"""Integration tests for payment endpoints and provider callbacks via TestClient."""

from datetime import timedelta

import pytest

from storefront.payments.gateway.fake import FAIL
from storefront.payments.gateway.port import CallbackStatus
from storefront.utils.clock import utc_now

CUSTOMER = {"X-User-Id": "cust-001"}
OTHER_CUSTOMER = {"X-User-Id": "cust-002"}
ADMIN = {"X-User-Id": "admin-001", "X-User-Role": "admin"}


@pytest.fixture()
def order_id(place_order):
    return str(place_order(quantity=2, price=10.0, stock=5).order.id)


@pytest.fixture()
def adapter(services):
    return services.providers.get_adapter("mpesa")


def _initiate(api_client, order_id, headers=CUSTOMER):
    return api_client.post(
        "/payments",
        json={"order_id": order_id, "method": "mpesa", "phone_number": "254712345678"},
        headers=headers,
    )


def _post_callback(api_client, adapter, reference, status=CallbackStatus.PAID, signature=None):
    body, signed = adapter.build_callback(reference, status)
    return api_client.post(
        "/payments/callbacks/mpesa",
        content=body,
        headers={adapter.signature_header: signature if signature is not None else signed},
    )


def _reference(services, payment_id):
    return services.payments.get_payment(payment_id).provider_reference


class TestInitiatePaymentAPI:
    def test_initiate_returns_201(self, api_client, order_id):
        response = _initiate(api_client, order_id)

        assert response.status_code == 201
        body = response.json()
        assert body["payment"]["status"] == "processing"
        assert body["payment"]["amount"] == 20.0
        assert body["redirect_url"]

    def test_other_customers_order_is_404(self, api_client, order_id):
        assert _initiate(api_client, order_id, headers=OTHER_CUSTOMER).status_code == 404

    def test_fourth_attempt_is_409(self, api_client, order_id):
        for _ in range(3):
            assert _initiate(api_client, order_id).status_code == 201

        response = _initiate(api_client, order_id)

        assert response.status_code == 409
        assert response.json()["error"]["details"]["limit"] == 3

    def test_provider_failure_is_502_without_provider_detail(self, api_client, adapter, order_id):
        adapter.configure(FAIL, "upstream said: secret internals")

        response = _initiate(api_client, order_id)

        assert response.status_code == 502
        error = response.json()["error"]
        assert error["kind"] == "provider"
        assert "secret internals" not in error["message"]

    def test_providers_listed(self, api_client):
        assert api_client.get("/payments/providers").json() == ["mpesa", "paystack", "paypal"]


class TestCallbackAPI:
    def test_valid_callback_marks_paid(self, api_client, services, adapter, order_id):
        payment_id = _initiate(api_client, order_id).json()["payment"]["payment_id"]

        response = _post_callback(api_client, adapter, _reference(services, payment_id))

        assert response.status_code == 200
        assert response.json() == {"payment_id": payment_id, "status": "paid", "applied": True}
        assert api_client.get(f"/payments/{payment_id}", headers=CUSTOMER).json()["status"] == "paid"

    def test_redelivered_callback_is_200_but_not_applied(self, api_client, services, adapter, order_id):
        payment_id = _initiate(api_client, order_id).json()["payment"]["payment_id"]
        reference = _reference(services, payment_id)
        _post_callback(api_client, adapter, reference)

        response = _post_callback(api_client, adapter, reference)

        assert response.status_code == 200
        assert response.json()["applied"] is False

    def test_callback_after_sweep_is_410_on_redelivery_too(self, api_client, services, adapter, order_id):
        payment_id = _initiate(api_client, order_id).json()["payment"]["payment_id"]
        reference = _reference(services, payment_id)
        services.payments.expire_stale_payments(as_of=utc_now() + timedelta(minutes=31))

        assert _post_callback(api_client, adapter, reference).status_code == 410
        assert _post_callback(api_client, adapter, reference).status_code == 410
        assert services.payments.get_payment(payment_id).status == "expired"

    def test_forged_signature_is_401(self, api_client, services, adapter, order_id):
        payment_id = _initiate(api_client, order_id).json()["payment"]["payment_id"]

        response = _post_callback(api_client, adapter, _reference(services, payment_id), signature="deadbeef")

        assert response.status_code == 401
        assert services.payments.get_payment(payment_id).status == "processing"

    def test_unknown_provider_is_400(self, api_client):
        response = api_client.post("/payments/callbacks/bitcoin", content=b"{}")
        assert response.status_code == 400


class TestPaymentReadsAPI:
    def test_list_payments_for_order(self, api_client, order_id):
        _initiate(api_client, order_id)
        _initiate(api_client, order_id)

        response = api_client.get(f"/payments/order/{order_id}", headers=CUSTOMER)

        assert response.status_code == 200
        statuses = sorted(item["status"] for item in response.json()["items"])
        assert statuses == ["failed", "processing"]

    def test_status_of_unknown_payment_is_404(self, api_client):
        assert api_client.get("/payments/missing", headers=CUSTOMER).status_code == 404


class TestRefundAPI:
    @pytest.fixture()
    def paid_payment_id(self, api_client, services, adapter, order_id):
        payment_id = _initiate(api_client, order_id).json()["payment"]["payment_id"]
        _post_callback(api_client, adapter, _reference(services, payment_id))
        return payment_id

    def test_admin_refunds(self, api_client, paid_payment_id):
        response = api_client.post(
            f"/payments/{paid_payment_id}/refund", json={"reason": "Damaged on arrival"}, headers=ADMIN
        )

        assert response.status_code == 200
        assert response.json()["payment"]["status"] == "refunded"
        assert response.json()["order_status"] == "refunded"

    def test_customer_cannot_refund(self, api_client, paid_payment_id):
        response = api_client.post(f"/payments/{paid_payment_id}/refund", json={"reason": "Please"}, headers=CUSTOMER)
        assert response.status_code == 403

    def test_second_refund_is_409(self, api_client, paid_payment_id):
        api_client.post(f"/payments/{paid_payment_id}/refund", json={"reason": "Damaged"}, headers=ADMIN)
        response = api_client.post(f"/payments/{paid_payment_id}/refund", json={"reason": "Damaged"}, headers=ADMIN)
        assert response.status_code == 409
