"""PayPal adapter — wallet checkout.

A v2 checkout order is created with our transaction id as ``custom_id``
and the customer approves it on PayPal. Capture webhooks then report the
outcome; their resource links back to the PayPal order id.
"""

import hashlib
import os

import httpx
import structlog

from storefront.errors import ProviderError, ValidationError
from storefront.payments.gateway.port import (
    CallbackOutcome,
    CallbackStatus,
    ProviderAdapter,
    ProviderName,
    ProviderRef,
    RefundOutcome,
)
from storefront.payments.gateway.transport import ProviderHttp, parse_body, verify_signature

logger = structlog.get_logger(__name__)

SANDBOX_URL = "https://api-m.sandbox.paypal.com"
PRODUCTION_URL = "https://api-m.paypal.com"

PAID_EVENTS = {"PAYMENT.CAPTURE.COMPLETED"}
FAILED_EVENTS = {"PAYMENT.CAPTURE.DENIED", "PAYMENT.CAPTURE.DECLINED"}


class PaypalAdapter(ProviderAdapter):
    name = ProviderName.PAYPAL
    signature_header = "Paypal-Transmission-Sig"
    refund_key = "paypalCaptureId"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        webhook_secret: str,
        return_url: str = "",
        cancel_url: str = "",
        currency: str = "USD",
        base_url: str = SANDBOX_URL,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.webhook_secret = webhook_secret
        self.return_url = return_url
        self.cancel_url = cancel_url
        self.currency = currency
        self.http = ProviderHttp(self.name.value, base_url, timeout=timeout, client=client)

    @classmethod
    def from_env(cls, timeout: float = 10.0, client: httpx.Client | None = None):
        mode = os.environ.get("PAYPAL_MODE", "sandbox")
        return cls(
            client_id=os.environ.get("PAYPAL_CLIENT_ID", ""),
            client_secret=os.environ.get("PAYPAL_CLIENT_SECRET", ""),
            webhook_secret=os.environ.get("PAYPAL_WEBHOOK_SECRET", ""),
            return_url=os.environ.get("PAYPAL_RETURN_URL", ""),
            cancel_url=os.environ.get("PAYPAL_CANCEL_URL", ""),
            currency=os.environ.get("PAYPAL_CURRENCY", "USD"),
            base_url=PRODUCTION_URL if mode == "live" else SANDBOX_URL,
            timeout=timeout,
            client=client,
        )

    def _access_token(self) -> str:
        body = self.http.request(
            "POST",
            "/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        return body["access_token"]

    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self._access_token()}"}

    def initiate(self, amount: float, reference: str, method_details: dict) -> ProviderRef:
        body = self.http.request(
            "POST",
            "/v2/checkout/orders",
            headers=self._auth_headers(),
            json={
                "intent": "CAPTURE",
                "purchase_units": [
                    {
                        "custom_id": reference,
                        "amount": {"currency_code": self.currency, "value": f"{amount:.2f}"},
                    }
                ],
                "application_context": {
                    "return_url": method_details.get("return_url") or self.return_url,
                    "cancel_url": method_details.get("cancel_url") or self.cancel_url,
                },
            },
        )

        order_id = body.get("id")
        if not order_id:
            raise ProviderError(self.name.value, "PayPal did not return an order id", retryable=False)
        approve_url = next(
            (link.get("href") for link in body.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None,
        )

        logger.info("PayPal order created", paypal_order_id=order_id, reference=reference)
        return ProviderRef(
            reference=order_id,
            redirect_url=approve_url,
            metadata={"paypalOrderId": order_id},
        )

    def verify_callback(self, raw_body: bytes, signature: str | None) -> CallbackOutcome:
        verify_signature(self.name.value, self.webhook_secret, raw_body, signature, hashlib.sha256)
        payload = parse_body(self.name.value, raw_body)

        event_type = payload.get("event_type")
        resource = payload.get("resource") or {}
        related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
        reference = related.get("order_id") or resource.get("custom_id")
        if not reference:
            raise ValidationError("PayPal callback has no order reference", {"provider": self.name.value})

        if event_type in PAID_EVENTS:
            capture_id = resource.get("id")
            return CallbackOutcome(
                reference=reference,
                status=CallbackStatus.PAID,
                provider_transaction_id=capture_id,
                metadata={"paypalCaptureId": capture_id, "paypalOrderId": related.get("order_id")},
                raw=payload,
            )
        if event_type in FAILED_EVENTS:
            reason = (resource.get("status_details") or {}).get("reason") or "Capture denied"
            return CallbackOutcome(
                reference=reference,
                status=CallbackStatus.FAILED,
                failure_reason=reason,
                raw=payload,
            )
        return CallbackOutcome(reference=reference, status=CallbackStatus.PENDING, raw=payload)

    def query_status(self, reference: str) -> CallbackOutcome:
        body = self.http.request("GET", f"/v2/checkout/orders/{reference}", headers=self._auth_headers())
        status = body.get("status")

        if status == "COMPLETED":
            units = body.get("purchase_units") or [{}]
            captures = (units[0].get("payments") or {}).get("captures") or [{}]
            capture_id = captures[0].get("id")
            return CallbackOutcome(
                reference=reference,
                status=CallbackStatus.PAID,
                provider_transaction_id=capture_id,
                metadata={"paypalCaptureId": capture_id, "paypalOrderId": reference},
                raw=body,
            )
        if status == "VOIDED":
            return CallbackOutcome(
                reference=reference,
                status=CallbackStatus.FAILED,
                failure_reason="Checkout order voided",
                raw=body,
            )
        return CallbackOutcome(reference=reference, status=CallbackStatus.PENDING, raw=body)

    def refund(self, provider_transaction_id: str, amount: float, reason: str) -> RefundOutcome:
        body = self.http.request(
            "POST",
            f"/v2/payments/captures/{provider_transaction_id}/refund",
            headers=self._auth_headers(),
            json={
                "amount": {"currency_code": self.currency, "value": f"{amount:.2f}"},
                "note_to_payer": (reason or "")[:255],
            },
        )
        status = body.get("status")
        if status not in ("COMPLETED", "PENDING"):
            return RefundOutcome(success=False, status=status, failure_reason=f"Refund {status or 'rejected'}")
        return RefundOutcome(success=True, provider_refund_id=body.get("id"), status=status.lower())
