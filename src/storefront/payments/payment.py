"""Payment aggregate (CQRS) — one attempt to pay for an order.

An order may accumulate several payments over time (failed or expired
attempts followed by a retry) but at most one is open at once. Provider
payloads differ wildly, so whatever the provider returns is kept verbatim
in ``provider_metadata`` and read back through ``ProviderMetadata``.

State Machine:
    PENDING -> PROCESSING -> PAID -> REFUNDED
    PENDING/PROCESSING -> FAILED
    PENDING/PROCESSING -> EXPIRED      (transaction timeout)
    FAILED -> PAID                      (provider timed out locally, then confirmed)
"""

import json
import secrets
from datetime import datetime, timedelta
from enum import Enum

from protean.fields import DateTime, Float, Identifier, String, Text

from storefront.domain import storefront
from storefront.errors import InvalidTransition, ProviderTimeout, ValidationError
from storefront.payments.events import (
    PaymentExpired,
    PaymentFailed,
    PaymentInitiated,
    PaymentRefunded,
    PaymentSubmitted,
    PaymentSucceeded,
)
from storefront.payments.gateway.port import ProviderName, ProviderRef
from storefront.utils.clock import as_utc, utc_now


class PaymentStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    EXPIRED = "expired"


OPEN_STATES = {PaymentStatus.PENDING, PaymentStatus.PROCESSING}

_VALID_TRANSITIONS = {
    PaymentStatus.PENDING: {
        PaymentStatus.PROCESSING,
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.EXPIRED,
    },
    PaymentStatus.PROCESSING: {PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.EXPIRED},
    PaymentStatus.FAILED: {PaymentStatus.PAID},  # Only after a local provider timeout
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),  # Terminal
    PaymentStatus.EXPIRED: set(),  # Terminal
}

SUPERSEDED = "SUPERSEDED"


def generate_transaction_id(now: datetime | None = None) -> str:
    now = now or utc_now()
    return f"TXN{int(now.timestamp() * 1000)}{secrets.randbelow(10**6):06d}"


class ProviderMetadata:
    """Read access to a payment's opaque provider metadata."""

    def __init__(self, payment_id, values: dict):
        self._payment_id = str(payment_id)
        self._values = dict(values)

    def get(self, key: str, default=None):
        return self._values.get(key, default)

    def require(self, key: str):
        """Return ``key``, failing loudly when the provider never supplied it."""
        if key not in self._values or self._values[key] in (None, ""):
            raise ValidationError(
                f"Payment {self._payment_id} has no provider metadata '{key}'",
                {"payment_id": self._payment_id, "key": key},
            )
        return self._values[key]

    def as_dict(self) -> dict:
        return dict(self._values)


@storefront.aggregate
class Payment:
    order_id = Identifier(required=True)
    user_id = Identifier(required=True)
    amount = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default="KES")
    provider = String(choices=ProviderName, required=True)
    status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)

    # Provider linkage
    transaction_id = String(required=True, max_length=64)
    provider_reference = String(max_length=255)
    provider_transaction_id = String(max_length=255)
    provider_metadata = Text()  # JSON object of string values, stored verbatim

    # Failure detail
    error_code = String(max_length=64)
    error_message = String(max_length=500)

    # Refund detail
    refund_reason = String(max_length=500)
    refunded_at = DateTime()
    refunded_by = String(max_length=255)

    expires_at = DateTime()
    paid_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def initiate(cls, order_id, user_id, amount, provider, timeout_minutes, currency="KES"):
        now = utc_now()
        payment = cls(
            order_id=order_id,
            user_id=user_id,
            amount=amount,
            currency=currency,
            provider=provider,
            status=PaymentStatus.PENDING.value,
            transaction_id=generate_transaction_id(now),
            provider_metadata=json.dumps({}),
            expires_at=now + timedelta(minutes=timeout_minutes),
            created_at=now,
            updated_at=now,
        )
        payment.raise_(
            PaymentInitiated(
                payment_id=str(payment.id),
                order_id=str(order_id),
                user_id=str(user_id),
                transaction_id=payment.transaction_id,
                provider=provider,
                amount=amount,
                currency=currency,
                expires_at=payment.expires_at,
                initiated_at=now,
            )
        )
        return payment

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def metadata(self) -> ProviderMetadata:
        values = json.loads(self.provider_metadata) if self.provider_metadata else {}
        return ProviderMetadata(self.id, values)

    @property
    def is_open(self) -> bool:
        return PaymentStatus(self.status) in OPEN_STATES

    @property
    def accepts_callback(self) -> bool:
        """Open payments, and failures caused only by our own provider timeout."""
        if self.is_open:
            return True
        return self.status == PaymentStatus.FAILED.value and self.error_code == ProviderTimeout.code

    def is_past_expiry(self, as_of: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (as_of or utc_now()) >= as_utc(self.expires_at)

    def refund_ineligibility(self, window_days: int, as_of: datetime | None = None) -> str | None:
        """Why this payment cannot be refunded now, or None when it can."""
        if self.status == PaymentStatus.REFUNDED.value:
            return "already refunded"
        if self.status != PaymentStatus.PAID.value:
            return f"payment is {self.status}"
        paid_at = as_utc(self.paid_at)
        if paid_at is None:
            return "payment has no paid timestamp"
        if (as_of or utc_now()) - paid_at > timedelta(days=window_days):
            return f"refund window of {window_days} days has passed"
        return None

    # -------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target: PaymentStatus):
        current = PaymentStatus(self.status)
        if target not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidTransition("payment", current.value, target.value)

    def _merge_metadata(self, values: dict):
        merged = self.metadata.as_dict()
        merged.update({key: value for key, value in (values or {}).items() if value is not None})
        self.provider_metadata = json.dumps(merged)

    def submit(self, provider_ref: ProviderRef):
        """Record what the provider returned when it accepted the initiation."""
        self._assert_can_transition(PaymentStatus.PROCESSING)

        now = utc_now()
        self.status = PaymentStatus.PROCESSING.value
        self.provider_reference = provider_ref.reference
        metadata = dict(provider_ref.metadata)
        if provider_ref.redirect_url:
            metadata["redirectUrl"] = provider_ref.redirect_url
        self._merge_metadata(metadata)
        self.updated_at = now

        self.raise_(
            PaymentSubmitted(
                payment_id=str(self.id),
                provider_reference=provider_ref.reference,
                submitted_at=now,
            )
        )

    def mark_paid(self, provider_transaction_id=None, metadata=None):
        if self.status == PaymentStatus.FAILED.value and not self.accepts_callback:
            raise InvalidTransition("payment", self.status, PaymentStatus.PAID.value)
        self._assert_can_transition(PaymentStatus.PAID)

        now = utc_now()
        self.status = PaymentStatus.PAID.value
        self.provider_transaction_id = provider_transaction_id or self.provider_transaction_id
        self.error_code = None
        self.error_message = None
        self._merge_metadata(metadata)
        self.paid_at = now
        self.updated_at = now

        self.raise_(
            PaymentSucceeded(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                amount=self.amount,
                provider_transaction_id=self.provider_transaction_id,
                paid_at=now,
            )
        )

    def mark_failed(self, error_code, error_message=None, metadata=None):
        self._assert_can_transition(PaymentStatus.FAILED)

        now = utc_now()
        self.status = PaymentStatus.FAILED.value
        self.error_code = error_code
        self.error_message = (error_message or "")[:500] or None
        self._merge_metadata(metadata)
        self.updated_at = now

        self.raise_(
            PaymentFailed(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                error_code=error_code,
                error_message=self.error_message,
                failed_at=now,
            )
        )

    def expire(self):
        self._assert_can_transition(PaymentStatus.EXPIRED)

        now = utc_now()
        self.status = PaymentStatus.EXPIRED.value
        self.error_code = "EXPIRED"
        self.error_message = "Transaction timed out before the provider confirmed it"
        self.updated_at = now

        self.raise_(
            PaymentExpired(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                expired_at=now,
            )
        )

    def mark_refunded(self, reason, actor):
        self._assert_can_transition(PaymentStatus.REFUNDED)

        now = utc_now()
        self.status = PaymentStatus.REFUNDED.value
        self.refund_reason = reason
        self.refunded_by = actor
        self.refunded_at = now
        self.updated_at = now

        self.raise_(
            PaymentRefunded(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                amount=self.amount,
                reason=reason,
                refunded_by=actor,
                refunded_at=now,
            )
        )
