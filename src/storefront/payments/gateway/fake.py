"""Configurable fake provider for development and testing.

Stands in for any ``ProviderName`` without network calls. It can be told to
succeed, fail or time out, records every call, and signs callbacks with a
known secret so tests can post them through the real verification path.
Status queries report whatever ``answer_status`` last set, pending by default.
"""

import hashlib
import json
from uuid import uuid4

from storefront.errors import ProviderError, ProviderTimeout
from storefront.payments.gateway.port import (
    CallbackOutcome,
    CallbackStatus,
    ProviderAdapter,
    ProviderName,
    ProviderRef,
    RefundOutcome,
)
from storefront.payments.gateway.transport import parse_body, sign, verify_signature

FAKE_SECRET = "fake-provider-secret"

SUCCEED = "succeed"
FAIL = "fail"
TIMEOUT = "timeout"


class FakeProviderAdapter(ProviderAdapter):
    signature_header = "X-Fake-Signature"
    refund_key = "fakeTransactionId"

    def __init__(self, name: ProviderName = ProviderName.MPESA, secret: str = FAKE_SECRET):
        self.name = name
        self.secret = secret
        self.mode = SUCCEED
        self.failure_reason = "Provider declined"
        self.calls: list[dict] = []
        self.status_answer = (CallbackStatus.PENDING, None, None)

    def configure(self, mode: str = SUCCEED, failure_reason: str = "Provider declined") -> None:
        """Set the outcome of subsequent ``initiate`` and ``refund`` calls."""
        self.mode = mode
        self.failure_reason = failure_reason

    def reset(self) -> None:
        self.mode = SUCCEED
        self.failure_reason = "Provider declined"
        self.calls.clear()
        self.status_answer = (CallbackStatus.PENDING, None, None)

    def _raise_for_mode(self):
        if self.mode == TIMEOUT:
            raise ProviderTimeout(self.name.value)
        if self.mode == FAIL:
            raise ProviderError(self.name.value, self.failure_reason, retryable=False)

    def initiate(self, amount: float, reference: str, method_details: dict) -> ProviderRef:
        self.calls.append(
            {"method": "initiate", "amount": amount, "reference": reference, "method_details": dict(method_details)}
        )
        self._raise_for_mode()

        provider_reference = f"fake-{self.name.value}-{uuid4().hex[:12]}"
        return ProviderRef(
            reference=provider_reference,
            redirect_url=f"https://fake-{self.name.value}.example.com/pay/{provider_reference}",
            metadata={"fakeReference": provider_reference},
        )

    def build_callback(
        self,
        reference: str,
        status: CallbackStatus = CallbackStatus.PAID,
        transaction_id: str | None = None,
        failure_reason: str | None = None,
    ) -> tuple[bytes, str]:
        """Return a signed callback body and its signature."""
        body = json.dumps(
            {
                "reference": reference,
                "status": status.value,
                "transaction_id": transaction_id or f"fake_txn_{uuid4().hex[:12]}",
                "failure_reason": failure_reason,
            }
        ).encode("utf-8")
        return body, sign(self.secret, body, hashlib.sha256)

    def verify_callback(self, raw_body: bytes, signature: str | None) -> CallbackOutcome:
        verify_signature(self.name.value, self.secret, raw_body, signature, hashlib.sha256)
        payload = parse_body(self.name.value, raw_body)

        status = CallbackStatus(payload.get("status", CallbackStatus.PENDING.value))
        metadata = {}
        if status == CallbackStatus.PAID:
            metadata["fakeTransactionId"] = payload.get("transaction_id")
        return CallbackOutcome(
            reference=payload["reference"],
            status=status,
            provider_transaction_id=payload.get("transaction_id") if status == CallbackStatus.PAID else None,
            failure_reason=payload.get("failure_reason"),
            metadata=metadata,
            raw=payload,
        )

    def answer_status(
        self,
        status: CallbackStatus,
        transaction_id: str | None = None,
        failure_reason: str | None = None,
    ) -> None:
        """Set what subsequent ``query_status`` calls report."""
        self.status_answer = (status, transaction_id, failure_reason)

    def query_status(self, reference: str) -> CallbackOutcome:
        self.calls.append({"method": "query_status", "reference": reference})
        if self.mode == TIMEOUT:
            raise ProviderTimeout(self.name.value)

        status, transaction_id, failure_reason = self.status_answer
        if status == CallbackStatus.PAID:
            transaction_id = transaction_id or f"fake_txn_{uuid4().hex[:12]}"
            return CallbackOutcome(
                reference=reference,
                status=status,
                provider_transaction_id=transaction_id,
                metadata={"fakeTransactionId": transaction_id},
            )
        return CallbackOutcome(reference=reference, status=status, failure_reason=failure_reason)

    def refund(self, provider_transaction_id: str, amount: float, reason: str) -> RefundOutcome:
        self.calls.append(
            {
                "method": "refund",
                "provider_transaction_id": provider_transaction_id,
                "amount": amount,
                "reason": reason,
            }
        )
        self._raise_for_mode()
        return RefundOutcome(success=True, provider_refund_id=f"fake_ref_{uuid4().hex[:12]}", status="succeeded")
