"""Payment transaction manager.

Drives a payment through its provider. Provider calls always happen
outside a unit of work; each state change around them is its own command,
processed while the order's lock is held. Customer notifications about the
outcome are best-effort and run after the change has committed.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog
from protean.utils.globals import current_domain

from storefront.config import Settings
from storefront.effects import SideEffectResult, best_effort
from storefront.errors import ExpiredError, OrderNotFound, PaymentNotFound, ProviderError, RefundNotEligible
from storefront.notifications.service import NotificationService
from storefront.ordering.lookup import load_order
from storefront.payments.callback import ApplyPaymentCallback
from storefront.payments.gateway import ProviderRegistry, fake_registry
from storefront.payments.gateway.port import CallbackOutcome, CallbackStatus, ProviderName
from storefront.payments.initiation import RecordProviderFailure, RecordProviderSubmission, StartPaymentAttempt
from storefront.payments.lookup import find_by_reference, load_payment, open_payments, payments_for_order
from storefront.payments.payment import Payment, PaymentStatus
from storefront.payments.settlement import ExpirePayment, MarkPaymentRefunded
from storefront.utils.clock import as_utc, utc_now
from storefront.utils.locks import KeyedLocks, order_key, product_key

logger = structlog.get_logger(__name__)

LATE_PAYMENT_REFUND_REASON = "Order was closed before the payment completed"


@dataclass(frozen=True)
class PaymentResult:
    payment: Payment
    redirect_url: str | None = None
    superseded_payment_id: str | None = None


@dataclass(frozen=True)
class CallbackResult:
    payment: Payment
    applied: bool
    side_effects: list[SideEffectResult] = field(default_factory=list)


@dataclass(frozen=True)
class RefundResult:
    payment: Payment
    order_status: str
    provider_refund_id: str | None = None
    stock_changes: list = field(default_factory=list)
    side_effects: list[SideEffectResult] = field(default_factory=list)


class PaymentTransactionManager:
    def __init__(
        self,
        settings: Settings | None = None,
        registry: ProviderRegistry | None = None,
        notifications: NotificationService | None = None,
        locks: KeyedLocks | None = None,
    ):
        self.settings = settings or Settings()
        self.registry = registry or fake_registry()
        self.notifications = notifications or NotificationService(self.settings)
        self.locks = locks or KeyedLocks()

    # -------------------------------------------------------------------
    # Initiation
    # -------------------------------------------------------------------
    def initiate(self, order_id, method, method_details: dict | None = None, user_id=None) -> PaymentResult:
        """Start a payment attempt for ``order_id`` with provider ``method``.

        Raises ``ProviderError`` when the provider refuses or cannot be
        reached; the attempt is then recorded as failed and still counts
        against the order's retry limit.
        """
        adapter = self.registry.get_adapter(method)
        method_details = dict(method_details or {})
        adapter.validate_details(method_details)

        with self.locks.hold(order_key(order_id)):
            started = current_domain.process(
                StartPaymentAttempt(
                    order_id=str(order_id),
                    provider=adapter.name.value,
                    user_id=str(user_id) if user_id else None,
                    currency=self.settings.currency,
                    retry_limit=self.settings.payment_retry_limit,
                    retry_interval_seconds=self.settings.payment_retry_interval_seconds,
                    timeout_minutes=self.settings.payment_timeout_minutes,
                ),
                asynchronous=False,
            )

        payment_id = started["payment_id"]
        logger.info(
            "Payment attempt started",
            payment_id=payment_id,
            order_id=str(order_id),
            provider=adapter.name.value,
            transaction_id=started["transaction_id"],
        )

        try:
            provider_ref = adapter.initiate(started["amount"], started["transaction_id"], method_details)
        except ProviderError as exc:
            self._record_initiation_failure(order_id, payment_id, exc)
            raise
        except Exception as exc:
            error = ProviderError(adapter.name.value, f"{adapter.name.value} initiation failed: {exc}", retryable=False)
            self._record_initiation_failure(order_id, payment_id, error)
            raise error from exc

        with self.locks.hold(order_key(order_id)):
            payment = current_domain.process(
                RecordProviderSubmission(
                    payment_id=payment_id,
                    reference=provider_ref.reference,
                    redirect_url=provider_ref.redirect_url,
                    metadata=json.dumps(provider_ref.metadata),
                ),
                asynchronous=False,
            )

        return PaymentResult(
            payment=payment,
            redirect_url=provider_ref.redirect_url,
            superseded_payment_id=started["superseded_payment_id"],
        )

    def _record_initiation_failure(self, order_id, payment_id, error: ProviderError) -> None:
        logger.error(
            "Provider initiation failed",
            payment_id=payment_id,
            provider=error.provider,
            error_code=error.code,
            error=error.message,
        )
        with self.locks.hold(order_key(order_id)):
            current_domain.process(
                RecordProviderFailure(payment_id=payment_id, error_code=error.code, error_message=error.message),
                asynchronous=False,
            )

    # -------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------
    def handle_callback(self, provider, raw_body: bytes, signature: str | None) -> CallbackResult:
        """Verify and apply a provider callback.

        Safe to call any number of times for the same callback: only the
        first delivery changes state or notifies anyone. Raises
        ``ExpiredError`` for a payment that expired before the callback
        arrived, however many times it is redelivered.
        """
        adapter = self.registry.get_adapter(provider)
        outcome = adapter.verify_callback(raw_body, signature)
        payment = find_by_reference(adapter.name.value, outcome.reference)
        return self._apply_outcome(adapter, payment, outcome)

    def _apply_outcome(self, adapter, payment: Payment, outcome: CallbackOutcome) -> CallbackResult:
        with self.locks.hold(order_key(payment.order_id)):
            applied = current_domain.process(
                ApplyPaymentCallback(
                    payment_id=str(payment.id),
                    status=outcome.status.value,
                    provider=adapter.name.value,
                    provider_transaction_id=outcome.provider_transaction_id,
                    failure_reason=outcome.failure_reason,
                    metadata=json.dumps(outcome.metadata),
                ),
                asynchronous=False,
            )

        payment = load_payment(payment.id)
        if applied["expired"]:
            raise ExpiredError(payment.id, payment.expires_at)

        side_effects = []
        if applied["refund_required"]:
            side_effects = [
                best_effort(
                    "late_payment_refund",
                    self.refund,
                    payment.id,
                    LATE_PAYMENT_REFUND_REASON,
                    "system",
                )
            ]
            payment = load_payment(payment.id)
        elif applied["applied"]:
            side_effects = self._notify_outcome(payment)
        return CallbackResult(payment=payment, applied=applied["applied"], side_effects=side_effects)

    def _notify_outcome(self, payment: Payment) -> list[SideEffectResult]:
        order = load_order(payment.order_id)
        context = {
            "order_id": str(order.id),
            "order_number": order.order_number,
            "payment_id": str(payment.id),
            "amount": payment.amount,
            "provider": payment.provider,
        }

        if payment.status == PaymentStatus.PAID.value:
            return [
                best_effort(
                    "payment_success_notification",
                    self.notifications.notify,
                    payment.user_id,
                    "payment_status",
                    {**context, "status": "completed"},
                ),
                best_effort("paid_order_admin_alert", self.notifications.notify_admins, "new_paid_order", context),
            ]
        return [
            best_effort(
                "payment_failure_notification",
                self.notifications.notify,
                payment.user_id,
                "payment_status",
                {**context, "status": "failed"},
            )
        ]

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    def refund(self, payment_id, reason: str, actor: str) -> RefundResult:
        """Refund a paid payment through its provider, then record it.

        A provider failure leaves the payment paid and propagates.
        """
        payment = load_payment(payment_id)
        order = load_order(payment.order_id)
        keys = [order_key(order.id)] + [product_key(product_id) for product_id in order.stock_requirements()]

        with self.locks.hold(*keys):
            payment = load_payment(payment_id)
            ineligible = payment.refund_ineligibility(self.settings.refund_window_days)
            if ineligible:
                raise RefundNotEligible(payment.id, ineligible)

            adapter = self.registry.get_adapter(payment.provider)
            provider_transaction_ref = payment.metadata.require(adapter.refund_key)
            outcome = adapter.refund(provider_transaction_ref, payment.amount, reason)
            if not outcome.success:
                raise ProviderError(
                    adapter.name.value,
                    f"Refund rejected: {outcome.failure_reason or outcome.status}",
                    retryable=False,
                )

            settled = current_domain.process(
                MarkPaymentRefunded(
                    payment_id=str(payment.id),
                    reason=reason,
                    actor=actor,
                    refund_window_days=self.settings.refund_window_days,
                ),
                asynchronous=False,
            )

        payment = load_payment(payment_id)
        logger.info(
            "Payment refunded",
            payment_id=str(payment.id),
            order_id=settled["order_id"],
            order_status=settled["order_status"],
            actor=actor,
        )

        side_effects = [
            best_effort(
                "refund_notification",
                self.notifications.notify,
                payment.user_id,
                "payment_refunded",
                {
                    "order_id": str(order.id),
                    "order_number": order.order_number,
                    "payment_id": str(payment.id),
                    "amount": payment.amount,
                    "reason": reason,
                },
            )
        ]
        return RefundResult(
            payment=payment,
            order_status=settled["order_status"],
            provider_refund_id=outcome.provider_refund_id,
            stock_changes=settled["stock_changes"],
            side_effects=side_effects,
        )

    # -------------------------------------------------------------------
    # Reads and expiry
    # -------------------------------------------------------------------
    def _expire_if_due(self, payment: Payment, as_of: datetime | None = None) -> tuple[Payment, bool]:
        as_of = as_utc(as_of) or utc_now()
        if not payment.is_open or not payment.is_past_expiry(as_of):
            return payment, False
        with self.locks.hold(order_key(payment.order_id)):
            expired = current_domain.process(
                ExpirePayment(payment_id=str(payment.id), as_of=as_of),
                asynchronous=False,
            )
        if expired:
            logger.info("Payment expired", payment_id=str(payment.id), order_id=str(payment.order_id))
        return load_payment(payment.id), expired

    def get_payment(self, payment_id, user_id=None) -> Payment:
        payment = load_payment(payment_id)
        if user_id and str(payment.user_id) != str(user_id):
            raise PaymentNotFound(payment_id)
        payment, _ = self._expire_if_due(payment)
        return payment

    def refresh_payment(self, payment_id, user_id=None, as_of: datetime | None = None) -> Payment:
        """Like ``get_payment``, but asks a quiet provider first (see ``check_status``)."""
        payment = self.get_payment(payment_id, user_id=user_id)
        payment, _ = self._reconcile(payment, as_utc(as_of) or utc_now())
        return payment

    def check_status(self, payment_id, user_id=None, as_of: datetime | None = None) -> dict:
        """Report a payment's state, asking the provider first when it has gone quiet.

        An open payment older than ``status_query_after_seconds`` is queried
        at its provider and a final answer is applied exactly as a callback
        would be. An unreachable provider only means the stored state is
        reported as it stands.
        """
        payment = self.get_payment(payment_id, user_id=user_id)
        payment, reconciled = self._reconcile(payment, as_utc(as_of) or utc_now())
        return {
            "payment_id": str(payment.id),
            "order_id": str(payment.order_id),
            "status": payment.status,
            "provider": payment.provider,
            "amount": payment.amount,
            "currency": payment.currency,
            "transaction_id": payment.transaction_id,
            "error_code": payment.error_code,
            "error_message": payment.error_message,
            "expires_at": payment.expires_at,
            "paid_at": payment.paid_at,
            "reconciled": reconciled,
        }

    def _reconcile(self, payment: Payment, as_of: datetime) -> tuple[Payment, bool]:
        if not payment.is_open or not payment.provider_reference or payment.is_past_expiry(as_of):
            return payment, False
        if as_of - as_utc(payment.created_at) < timedelta(seconds=self.settings.status_query_after_seconds):
            return payment, False

        adapter = self.registry.get_adapter(payment.provider)
        try:
            outcome = adapter.query_status(payment.provider_reference)
        except ProviderError as exc:
            logger.warning(
                "Provider status query failed",
                payment_id=str(payment.id),
                provider=payment.provider,
                error_code=exc.code,
                error=exc.message,
            )
            return payment, False

        if outcome.status == CallbackStatus.PENDING:
            return payment, False

        logger.info(
            "Payment reconciled from provider status",
            payment_id=str(payment.id),
            provider=payment.provider,
            status=outcome.status.value,
        )
        try:
            result = self._apply_outcome(adapter, payment, outcome)
        except ExpiredError:
            # Expired between the read and the apply
            return load_payment(payment.id), False
        return result.payment, result.applied

    def list_payments(self, order_id, user_id=None) -> list[Payment]:
        order = load_order(order_id)
        if user_id and str(order.user_id) != str(user_id):
            raise OrderNotFound(order_id)
        return payments_for_order(order.id)

    def expire_stale_payments(self, as_of: datetime | None = None) -> int:
        """Expire every open payment past its deadline. Returns how many were expired."""
        as_of = as_utc(as_of) or utc_now()
        expired = 0
        for payment in open_payments():
            if payment.is_past_expiry(as_of):
                _, changed = self._expire_if_due(payment, as_of)
                expired += int(changed)
        logger.info("Stale payment sweep complete", expired=expired)
        return expired

    def supported_providers(self) -> list[str]:
        return [name.value for name in ProviderName if name in self.registry]
