"""Payment initiation — commands and handler.

A payment attempt is recorded in two steps around the provider call: the
pending Payment and the order's attempt counter commit together before the
provider is contacted, and the provider's answer is recorded afterwards.
The provider is never called inside a unit of work.
"""

import json
from datetime import timedelta

import structlog
from protean import handle
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.errors import OrderNotFound, PaymentInProgress
from storefront.ordering.lookup import load_order
from storefront.ordering.order import Order
from storefront.payments.gateway.port import ProviderName, ProviderRef
from storefront.payments.lookup import load_payment, open_payment_for_order
from storefront.payments.payment import SUPERSEDED, Payment
from storefront.utils.clock import as_utc, utc_now

logger = structlog.get_logger(__name__)


@storefront.command(part_of="Payment")
class StartPaymentAttempt:
    order_id = Identifier(required=True)
    provider = String(choices=ProviderName, required=True)
    user_id = Identifier()  # When given, the order must belong to this user
    currency = String(max_length=3, default="KES")
    retry_limit = Integer(required=True, min_value=1)
    retry_interval_seconds = Integer(required=True, min_value=0)
    timeout_minutes = Integer(required=True, min_value=1)


@storefront.command(part_of="Payment")
class RecordProviderSubmission:
    payment_id = Identifier(required=True)
    reference = String(required=True, max_length=255)
    redirect_url = String(max_length=2000)
    metadata = Text()  # JSON object


@storefront.command(part_of="Payment")
class RecordProviderFailure:
    payment_id = Identifier(required=True)
    error_code = String(required=True, max_length=64)
    error_message = String(max_length=500)


@storefront.command_handler(part_of=Payment)
class PaymentInitiationHandler:
    @handle(StartPaymentAttempt)
    def start_attempt(self, command):
        order = load_order(command.order_id)
        if command.user_id and str(order.user_id) != str(command.user_id):
            raise OrderNotFound(command.order_id)
        order.assert_payable(command.retry_limit)

        payment_repo = current_domain.repository_for(Payment)

        superseded_id = None
        open_payment = open_payment_for_order(order.id)
        if open_payment is not None:
            now = utc_now()
            age = now - as_utc(open_payment.created_at)
            if age < timedelta(seconds=command.retry_interval_seconds):
                raise PaymentInProgress(order.id, open_payment.id)

            if open_payment.is_past_expiry(now):
                open_payment.expire()
            else:
                open_payment.mark_failed(SUPERSEDED, "Superseded by a new payment attempt")
            payment_repo.add(open_payment)
            superseded_id = str(open_payment.id)
            logger.info(
                "Open payment superseded",
                payment_id=superseded_id,
                order_id=str(order.id),
                status=open_payment.status,
            )

        payment = Payment.initiate(
            order_id=order.id,
            user_id=order.user_id,
            amount=order.total,
            provider=command.provider,
            timeout_minutes=command.timeout_minutes,
            currency=command.currency or "KES",
        )
        order.record_payment_attempt(command.retry_limit)

        payment_repo.add(payment)
        current_domain.repository_for(Order).add(order)

        return {
            "payment_id": str(payment.id),
            "transaction_id": payment.transaction_id,
            "amount": payment.amount,
            "superseded_payment_id": superseded_id,
        }

    @handle(RecordProviderSubmission)
    def record_submission(self, command):
        payment = load_payment(command.payment_id)
        if payment.status != "pending":
            logger.warning(
                "Provider submission recorded after payment resolved",
                payment_id=str(payment.id),
                status=payment.status,
            )
            return payment

        payment.submit(
            ProviderRef(
                reference=command.reference,
                redirect_url=command.redirect_url,
                metadata=json.loads(command.metadata) if command.metadata else {},
            )
        )
        current_domain.repository_for(Payment).add(payment)
        return payment

    @handle(RecordProviderFailure)
    def record_failure(self, command):
        payment = load_payment(command.payment_id)
        if not payment.is_open:
            return payment

        payment.mark_failed(command.error_code, command.error_message)
        order = load_order(payment.order_id)
        order.record_payment_failure(payment.id, reason=command.error_message)

        current_domain.repository_for(Payment).add(payment)
        current_domain.repository_for(Order).add(order)
        return payment
