"""Paystack adapter — hosted redirect checkout.

The customer is sent to Paystack's ``authorization_url``; Paystack then
posts ``charge.success`` or ``charge.failed`` events for our reference.
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

BASE_URL = "https://api.paystack.co"

FAILED_STATUSES = {"failed", "abandoned", "reversed"}


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


class PaystackAdapter(ProviderAdapter):
    name = ProviderName.PAYSTACK
    signature_header = "X-Paystack-Signature"
    refund_key = "paystackReference"

    def __init__(
        self,
        secret_key: str,
        callback_url: str = "",
        currency: str = "KES",
        base_url: str = BASE_URL,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self.secret_key = secret_key
        self.callback_url = callback_url
        self.currency = currency
        self.http = ProviderHttp(self.name.value, base_url, timeout=timeout, client=client)

    @classmethod
    def from_env(cls, currency: str = "KES", timeout: float = 10.0, client: httpx.Client | None = None):
        return cls(
            secret_key=os.environ.get("PAYSTACK_SECRET_KEY", ""),
            callback_url=os.environ.get("PAYSTACK_CALLBACK_URL", ""),
            currency=currency,
            timeout=timeout,
            client=client,
        )

    @property
    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.secret_key}"}

    def validate_details(self, method_details: dict) -> None:
        email = str(method_details.get("email") or "").strip()
        if "@" not in email:
            raise ValidationError("A valid email is required for Paystack payments", {"email": email})

    def initiate(self, amount: float, reference: str, method_details: dict) -> ProviderRef:
        self.validate_details(method_details)
        email = str(method_details["email"]).strip()

        payload = {
            "email": email,
            "amount": to_minor_units(amount),
            "currency": self.currency,
            "reference": reference,
            "metadata": {"transactionId": reference},
        }
        if self.callback_url:
            payload["callback_url"] = self.callback_url

        body = self.http.request("POST", "/transaction/initialize", headers=self._headers, json=payload)
        if not body.get("status") or not body.get("data"):
            raise ProviderError(self.name.value, body.get("message") or "Paystack initialization rejected", retryable=False)

        data = body["data"]
        logger.info("Paystack transaction initialized", reference=data.get("reference") or reference)
        return ProviderRef(
            reference=data.get("reference") or reference,
            redirect_url=data.get("authorization_url"),
            metadata={
                "paystackReference": data.get("reference") or reference,
                "accessCode": str(data.get("access_code") or ""),
            },
        )

    def verify_callback(self, raw_body: bytes, signature: str | None) -> CallbackOutcome:
        verify_signature(self.name.value, self.secret_key, raw_body, signature, hashlib.sha512)
        payload = parse_body(self.name.value, raw_body)

        event = payload.get("event")
        data = payload.get("data") or {}
        reference = data.get("reference")
        if not reference:
            raise ValidationError("Paystack callback has no reference", {"provider": self.name.value})

        if event == "charge.success":
            return CallbackOutcome(
                reference=reference,
                status=CallbackStatus.PAID,
                provider_transaction_id=str(data.get("id") or "") or None,
                metadata={"paystackReference": reference, "channel": str(data.get("channel") or "")},
                raw=payload,
            )
        if event == "charge.failed":
            return CallbackOutcome(
                reference=reference,
                status=CallbackStatus.FAILED,
                failure_reason=data.get("gateway_response") or "Charge failed",
                raw=payload,
            )
        return CallbackOutcome(reference=reference, status=CallbackStatus.PENDING, raw=payload)

    def query_status(self, reference: str) -> CallbackOutcome:
        body = self.http.request("GET", f"/transaction/verify/{reference}", headers=self._headers)
        data = body.get("data") or {}
        status = data.get("status")

        if status == "success":
            return CallbackOutcome(
                reference=reference,
                status=CallbackStatus.PAID,
                provider_transaction_id=str(data.get("id") or "") or None,
                metadata={"paystackReference": reference, "channel": str(data.get("channel") or "")},
                raw=body,
            )
        if status in FAILED_STATUSES:
            return CallbackOutcome(
                reference=reference,
                status=CallbackStatus.FAILED,
                failure_reason=data.get("gateway_response") or f"Transaction {status}",
                raw=body,
            )
        return CallbackOutcome(reference=reference, status=CallbackStatus.PENDING, raw=body)

    def refund(self, provider_transaction_id: str, amount: float, reason: str) -> RefundOutcome:
        body = self.http.request(
            "POST",
            "/refund",
            headers=self._headers,
            json={
                "transaction": provider_transaction_id,
                "amount": to_minor_units(amount),
                "merchant_note": (reason or "")[:255],
            },
        )
        data = body.get("data") or {}
        if not body.get("status"):
            return RefundOutcome(success=False, status="rejected", failure_reason=body.get("message"))
        return RefundOutcome(
            success=True,
            provider_refund_id=str(data.get("id") or "") or None,
            status=data.get("status") or "pending",
        )
