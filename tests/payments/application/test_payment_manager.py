"""Application tests for PaymentTransactionManager."""

from dataclasses import replace
from datetime import timedelta

import pytest
from protean import current_domain

from storefront.errors import (
    AlreadyPaid,
    ExpiredError,
    OrderNotFound,
    OrderNotPayable,
    PaymentInProgress,
    PaymentNotFound,
    ProviderError,
    ProviderTimeout,
    RefundNotEligible,
    RetryLimitExceeded,
    SignatureError,
    ValidationError,
)
from storefront.notifications.notification import Notification, NotificationType
from storefront.ordering.order import OrderPaymentStatus, OrderStatus
from storefront.payments.gateway.fake import FAIL, SUCCEED, TIMEOUT
from storefront.payments.gateway.port import CallbackStatus
from storefront.payments.payment import SUPERSEDED, Payment, PaymentStatus
from storefront.utils.clock import utc_now

MPESA_DETAILS = {"phone_number": "254712345678"}


def _payments_for(order_id):
    return current_domain.repository_for(Payment)._dao.query.filter(order_id=str(order_id)).all().items


def _payment_notifications(user_id):
    notifications = current_domain.repository_for(Notification)._dao.query.filter(user_id=user_id).all().items
    return [n for n in notifications if n.notification_type == NotificationType.PAYMENT.value]


@pytest.fixture()
def adapter(services):
    return services.providers.get_adapter("mpesa")


@pytest.fixture()
def order(place_order):
    return place_order(quantity=2, price=10.0, stock=5).order


def _callback(services, adapter, reference, status=CallbackStatus.PAID, **kwargs):
    body, signature = adapter.build_callback(reference, status, **kwargs)
    return services.payments.handle_callback(adapter.name.value, body, signature)


class TestInitiate:
    def test_initiate_submits_to_provider(self, services, adapter, order):
        result = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS, user_id="cust-001")

        assert result.payment.status == PaymentStatus.PROCESSING.value
        assert result.payment.amount == order.total
        assert result.payment.provider_reference
        assert result.redirect_url
        assert adapter.calls[0]["reference"] == result.payment.transaction_id
        assert adapter.calls[0]["method_details"] == MPESA_DETAILS

    def test_initiate_counts_the_attempt(self, services, order):
        services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        assert services.orders.get_order(order.id).payment_retry_count == 1

    def test_unknown_provider_is_rejected(self, services, order):
        with pytest.raises(ValidationError):
            services.payments.initiate(order.id, "bitcoin", {})
        assert _payments_for(order.id) == []

    def test_someone_elses_order_is_not_found(self, services, order):
        with pytest.raises(OrderNotFound):
            services.payments.initiate(order.id, "mpesa", MPESA_DETAILS, user_id="cust-999")

    def test_retry_supersedes_open_payment(self, services, order):
        first = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        second = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)

        assert second.superseded_payment_id == str(first.payment.id)
        superseded = services.payments.get_payment(first.payment.id)
        assert superseded.status == PaymentStatus.FAILED.value
        assert superseded.error_code == SUPERSEDED
        assert len([p for p in _payments_for(order.id) if p.is_open]) == 1

    def test_fourth_attempt_exceeds_retry_limit(self, services, order):
        for _ in range(3):
            services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)

        with pytest.raises(RetryLimitExceeded):
            services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        assert len(_payments_for(order.id)) == 3

    def test_retry_within_interval_is_refused(self, settings, email, order, services):
        from storefront.payments.gateway import fake_registry
        from storefront.services import build_services

        patient = build_services(
            settings=replace(settings, payment_retry_interval_seconds=120),
            providers=fake_registry(),
            email=email,
        )
        patient.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        with pytest.raises(PaymentInProgress):
            patient.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        assert len(_payments_for(order.id)) == 1

    def test_provider_failure_is_recorded_and_counted(self, services, adapter, order):
        adapter.configure(FAIL, "Invalid phone")
        with pytest.raises(ProviderError):
            services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)

        [payment] = _payments_for(order.id)
        assert payment.status == PaymentStatus.FAILED.value
        assert payment.error_code == ProviderError.code
        stored_order = services.orders.get_order(order.id)
        assert stored_order.payment_retry_count == 1
        assert stored_order.payment_status == OrderPaymentStatus.FAILED.value

    def test_provider_timeout_is_recorded(self, services, adapter, order):
        adapter.configure(TIMEOUT)
        with pytest.raises(ProviderTimeout):
            services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)

        [payment] = _payments_for(order.id)
        assert payment.error_code == ProviderTimeout.code
        assert payment.provider_reference is None

    def test_cancelled_order_is_not_payable(self, services, order):
        services.orders.cancel_order(order.id, actor="cust-001")
        with pytest.raises(OrderNotPayable):
            services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)


class TestCallbacks:
    def test_success_callback_marks_payment_and_order_paid(self, services, adapter, order):
        started = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)

        result = _callback(services, adapter, started.payment.provider_reference, transaction_id="MPESA123")

        assert result.applied
        assert result.payment.status == PaymentStatus.PAID.value
        assert result.payment.provider_transaction_id == "MPESA123"
        stored_order = services.orders.get_order(order.id)
        assert stored_order.is_paid
        assert stored_order.status == OrderStatus.PROCESSING.value
        assert stored_order.payment_retry_count == 0

    def test_duplicate_callback_applies_once(self, services, adapter, order):
        started = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        body, signature = adapter.build_callback(started.payment.provider_reference, CallbackStatus.PAID)

        first = services.payments.handle_callback("mpesa", body, signature)
        second = services.payments.handle_callback("mpesa", body, signature)

        assert first.applied
        assert not second.applied
        assert second.payment.status == PaymentStatus.PAID.value
        completed = [n for n in _payment_notifications("cust-001") if n.data.get("status") == "completed"]
        assert len(completed) == 1

    def test_paid_order_refuses_new_attempts(self, services, adapter, order):
        started = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        _callback(services, adapter, started.payment.provider_reference)
        with pytest.raises(AlreadyPaid):
            services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)

    def test_failure_callback_marks_payment_failed(self, services, adapter, order):
        started = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)

        result = _callback(
            services, adapter, started.payment.provider_reference, CallbackStatus.FAILED, failure_reason="Cancelled"
        )

        assert result.payment.status == PaymentStatus.FAILED.value
        assert result.payment.error_message == "Cancelled"
        failed = [n for n in _payment_notifications("cust-001") if n.data.get("status") == "failed"]
        assert len(failed) == 1

    def test_success_after_local_timeout_is_honoured(self, services, adapter, order):
        adapter.configure(TIMEOUT)
        with pytest.raises(ProviderTimeout):
            services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        [timed_out] = _payments_for(order.id)

        result = _callback(services, adapter, timed_out.transaction_id, transaction_id="MPESA777")

        assert result.applied
        assert result.payment.status == PaymentStatus.PAID.value
        assert services.orders.get_order(order.id).is_paid

    def test_callback_after_expiry_is_refused(self, services, adapter, order):
        started = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        repo = current_domain.repository_for(Payment)
        payment = repo.get(started.payment.id)
        payment.expires_at = utc_now() - timedelta(minutes=1)
        repo.add(payment)

        with pytest.raises(ExpiredError):
            _callback(services, adapter, started.payment.provider_reference)

        assert services.payments.get_payment(started.payment.id).status == PaymentStatus.EXPIRED.value
        assert not services.orders.get_order(order.id).is_paid

    def test_callback_after_sweep_expiry_is_refused_on_every_delivery(self, services, adapter, order):
        started = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        assert services.payments.expire_stale_payments(as_of=utc_now() + timedelta(minutes=31)) == 1
        body, signature = adapter.build_callback(started.payment.provider_reference, CallbackStatus.PAID)

        for _ in range(2):
            with pytest.raises(ExpiredError):
                services.payments.handle_callback("mpesa", body, signature)

        assert services.payments.get_payment(started.payment.id).status == PaymentStatus.EXPIRED.value
        assert not services.orders.get_order(order.id).is_paid
        assert [n for n in _payment_notifications("cust-001") if n.data.get("status") == "completed"] == []

    def test_failure_callback_after_lazy_expiry_is_refused(self, services, adapter, order):
        started = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        repo = current_domain.repository_for(Payment)
        payment = repo.get(started.payment.id)
        payment.expires_at = utc_now() - timedelta(seconds=1)
        repo.add(payment)
        assert services.payments.check_status(started.payment.id)["status"] == PaymentStatus.EXPIRED.value

        with pytest.raises(ExpiredError):
            _callback(services, adapter, started.payment.provider_reference, CallbackStatus.FAILED)

        assert services.payments.get_payment(started.payment.id).status == PaymentStatus.EXPIRED.value

    def test_payment_completing_after_cancellation_is_refunded(self, services, adapter, order):
        started = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        services.orders.cancel_order(order.id, actor="cust-001", reason="Changed my mind")
        assert services.inventory.get_product(order.lines[0].product_id).stock == 5

        result = _callback(services, adapter, started.payment.provider_reference, transaction_id="MPESA555")

        assert result.applied
        assert [effect.name for effect in result.side_effects] == ["late_payment_refund"]
        assert result.side_effects[0].ok
        assert result.payment.status == PaymentStatus.REFUNDED.value
        assert adapter.calls[-1]["method"] == "refund"
        assert adapter.calls[-1]["provider_transaction_id"] == "MPESA555"
        stored_order = services.orders.get_order(order.id)
        assert stored_order.status == OrderStatus.CANCELLED.value
        assert stored_order.payment_status == OrderPaymentStatus.REFUNDED.value
        assert services.inventory.get_product(order.lines[0].product_id).stock == 5
        assert [n for n in _payment_notifications("cust-001") if n.data.get("status") == "completed"] == []

    def test_throttled_owner_does_not_block_payment(self, services, settings, adapter, order):
        started = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        key = services.rate_limiter.key_for("cust-001")
        while services.rate_limiter.remaining(key):
            services.rate_limiter.hit(key)

        result = _callback(services, adapter, started.payment.provider_reference, transaction_id="MPESA321")

        assert result.applied
        assert result.payment.status == PaymentStatus.PAID.value
        assert services.orders.get_order(order.id).is_paid
        effects = {effect.name: effect for effect in result.side_effects}
        assert not effects["payment_success_notification"].ok
        assert effects["paid_order_admin_alert"].ok
        assert [n for n in _payment_notifications("cust-001") if n.data.get("status") == "completed"] == []

    def test_late_payment_refund_failure_leaves_payment_paid(self, services, adapter, order):
        started = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        services.orders.cancel_order(order.id, actor="cust-001")
        adapter.configure(FAIL, "Refunds unavailable")

        result = _callback(services, adapter, started.payment.provider_reference)

        assert result.applied
        assert not result.side_effects[0].ok
        assert result.payment.status == PaymentStatus.PAID.value
        assert services.orders.get_order(order.id).status == OrderStatus.CANCELLED.value

    def test_bad_signature_is_rejected_before_lookup(self, services, adapter, order):
        started = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        body, _ = adapter.build_callback(started.payment.provider_reference, CallbackStatus.PAID)

        with pytest.raises(SignatureError):
            services.payments.handle_callback("mpesa", body, "forged")
        assert services.payments.get_payment(started.payment.id).status == PaymentStatus.PROCESSING.value

    def test_unknown_reference_is_not_found(self, services, adapter):
        with pytest.raises(PaymentNotFound):
            _callback(services, adapter, "no-such-reference")


class TestRefund:
    @pytest.fixture()
    def paid(self, services, adapter, order):
        started = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        return _callback(services, adapter, started.payment.provider_reference, transaction_id="MPESA123").payment

    def test_refund_marks_payment_and_order_refunded(self, services, adapter, order, paid):
        result = services.payments.refund(paid.id, "Damaged on arrival", "admin-001")

        assert result.payment.status == PaymentStatus.REFUNDED.value
        assert result.payment.refund_reason == "Damaged on arrival"
        assert result.order_status == OrderStatus.REFUNDED.value
        assert result.provider_refund_id
        assert adapter.calls[-1]["provider_transaction_id"] == "MPESA123"

    def test_refund_restores_stock(self, services, order, paid):
        services.payments.refund(paid.id, "Damaged", "admin-001")
        assert services.inventory.get_product(order.lines[0].product_id).stock == 5

    def test_refund_notifies_customer(self, services, paid):
        services.payments.refund(paid.id, "Damaged", "admin-001")
        refunded = [n for n in _payment_notifications("cust-001") if n.data.get("status") == "refunded"]
        assert len(refunded) == 1

    def test_second_refund_is_not_eligible(self, services, order, paid):
        services.payments.refund(paid.id, "Damaged", "admin-001")
        with pytest.raises(RefundNotEligible):
            services.payments.refund(paid.id, "Damaged", "admin-001")
        assert services.inventory.get_product(order.lines[0].product_id).stock == 5

    def test_unpaid_payment_is_not_eligible(self, services, order):
        started = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        with pytest.raises(RefundNotEligible):
            services.payments.refund(started.payment.id, "Damaged", "admin-001")

    def test_refund_outside_window_is_not_eligible(self, services, paid):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(paid.id)
        payment.paid_at = utc_now() - timedelta(days=31)
        repo.add(payment)

        with pytest.raises(RefundNotEligible):
            services.payments.refund(paid.id, "Damaged", "admin-001")

    def test_provider_refusal_leaves_payment_paid(self, services, adapter, paid):
        adapter.configure(FAIL)
        with pytest.raises(ProviderError):
            services.payments.refund(paid.id, "Damaged", "admin-001")
        adapter.configure(SUCCEED)
        assert services.payments.get_payment(paid.id).status == PaymentStatus.PAID.value


class TestExpiry:
    def test_sweep_expires_stale_payments(self, services, order):
        started = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)

        assert services.payments.expire_stale_payments(as_of=utc_now() + timedelta(minutes=5)) == 0
        assert services.payments.expire_stale_payments(as_of=utc_now() + timedelta(minutes=31)) == 1
        assert services.payments.get_payment(started.payment.id).status == PaymentStatus.EXPIRED.value

    def test_status_read_expires_lazily(self, services, order):
        started = services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        repo = current_domain.repository_for(Payment)
        payment = repo.get(started.payment.id)
        payment.expires_at = utc_now() - timedelta(seconds=1)
        repo.add(payment)

        status = services.payments.check_status(started.payment.id)

        assert status["status"] == PaymentStatus.EXPIRED.value

    def test_list_payments_for_owner(self, services, order):
        services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        services.payments.initiate(order.id, "mpesa", MPESA_DETAILS)
        assert len(services.payments.list_payments(order.id, user_id="cust-001")) == 2
        with pytest.raises(OrderNotFound):
            services.payments.list_payments(order.id, user_id="cust-999")

    def test_supported_providers(self, services):
        assert services.payments.supported_providers() == ["mpesa", "paystack", "paypal"]


class TestStatusReconciliation:
    @pytest.fixture()
    def quiet(self, services, order):
        """A submitted payment that has heard nothing from its provider for a while."""
        return services.payments.initiate(order.id, "mpesa", MPESA_DETAILS).payment

    @staticmethod
    def _later(seconds=31):
        return utc_now() + timedelta(seconds=seconds)

    def _queries(self, adapter):
        return [call for call in adapter.calls if call["method"] == "query_status"]

    def test_recent_payment_is_not_queried(self, services, adapter, quiet):
        status = services.payments.check_status(quiet.id)

        assert status["status"] == PaymentStatus.PROCESSING.value
        assert not status["reconciled"]
        assert self._queries(adapter) == []

    def test_still_pending_at_provider_changes_nothing(self, services, adapter, quiet):
        status = services.payments.check_status(quiet.id, as_of=self._later())

        assert status["status"] == PaymentStatus.PROCESSING.value
        assert not status["reconciled"]
        assert self._queries(adapter) == [{"method": "query_status", "reference": quiet.provider_reference}]

    def test_paid_at_provider_is_applied_like_a_callback(self, services, adapter, order, quiet):
        adapter.answer_status(CallbackStatus.PAID, transaction_id="MPESA900")

        status = services.payments.check_status(quiet.id, as_of=self._later())

        assert status["status"] == PaymentStatus.PAID.value
        assert status["reconciled"]
        assert services.payments.get_payment(quiet.id).provider_transaction_id == "MPESA900"
        stored_order = services.orders.get_order(order.id)
        assert stored_order.is_paid
        assert stored_order.status == OrderStatus.PROCESSING.value
        completed = [n for n in _payment_notifications("cust-001") if n.data.get("status") == "completed"]
        assert len(completed) == 1

    def test_failed_at_provider_is_recorded(self, services, adapter, quiet):
        adapter.answer_status(CallbackStatus.FAILED, failure_reason="Request cancelled by user")

        status = services.payments.check_status(quiet.id, as_of=self._later())

        assert status["status"] == PaymentStatus.FAILED.value
        assert status["error_message"] == "Request cancelled by user"

    def test_later_callback_after_reconciliation_is_not_applied_twice(self, services, adapter, quiet):
        adapter.answer_status(CallbackStatus.PAID, transaction_id="MPESA900")
        services.payments.check_status(quiet.id, as_of=self._later())

        result = _callback(services, adapter, quiet.provider_reference, transaction_id="MPESA900")

        assert not result.applied
        completed = [n for n in _payment_notifications("cust-001") if n.data.get("status") == "completed"]
        assert len(completed) == 1

    def test_unreachable_provider_reports_stored_state(self, services, adapter, quiet):
        adapter.configure(TIMEOUT)

        status = services.payments.check_status(quiet.id, as_of=self._later())

        assert status["status"] == PaymentStatus.PROCESSING.value
        assert not status["reconciled"]

    def test_resolved_payment_is_not_queried(self, services, adapter, quiet):
        _callback(services, adapter, quiet.provider_reference)

        services.payments.check_status(quiet.id, as_of=self._later())

        assert self._queries(adapter) == []

    def test_refresh_payment_returns_reconciled_payment(self, services, adapter, quiet):
        adapter.answer_status(CallbackStatus.PAID)

        payment = services.payments.refresh_payment(quiet.id, user_id="cust-001", as_of=self._later())

        assert payment.status == PaymentStatus.PAID.value
