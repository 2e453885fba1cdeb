"""Provider callback handling.

Applies an already-verified callback to the payment and its order in one
unit of work. A payment that is already resolved is left untouched, which
makes redelivered callbacks harmless. A callback for an expired payment is
rejected however often it is delivered. Money collected for an order that
was cancelled in the meantime is flagged so the manager refunds it.
"""

import json

import structlog
from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.ordering.lookup import load_order
from storefront.ordering.order import STOCK_RETURNING_STATES, Order, OrderStatus
from storefront.payments.gateway.port import CallbackStatus, ProviderName
from storefront.payments.lookup import load_payment
from storefront.payments.payment import Payment, PaymentStatus
from storefront.utils.clock import utc_now

logger = structlog.get_logger(__name__)

PROVIDER_DECLINED = "PROVIDER_DECLINED"


@storefront.command(part_of="Payment")
class ApplyPaymentCallback:
    payment_id = Identifier(required=True)
    status = String(choices=CallbackStatus, required=True)
    provider = String(choices=ProviderName, required=True)
    provider_transaction_id = String(max_length=255)
    failure_reason = String(max_length=500)
    metadata = Text()  # JSON object


@storefront.command_handler(part_of=Payment)
class PaymentCallbackHandler:
    @handle(ApplyPaymentCallback)
    def apply_callback(self, command):
        payment = load_payment(command.payment_id)
        result = {
            "payment_id": str(payment.id),
            "order_id": str(payment.order_id),
            "applied": False,
            "expired": False,
            "refund_required": False,
        }

        status = CallbackStatus(command.status)

        if payment.status == PaymentStatus.EXPIRED.value and status != CallbackStatus.PENDING:
            # Expired by the sweep or a status read before this callback arrived
            logger.warning("Callback for expired payment rejected", payment_id=str(payment.id))
            return {**result, "expired": True}

        if not payment.accepts_callback:
            logger.info(
                "Callback for resolved payment ignored",
                payment_id=str(payment.id),
                status=payment.status,
                callback_status=command.status,
            )
            return result

        if payment.is_past_expiry(utc_now()):
            if payment.is_open:
                payment.expire()
                current_domain.repository_for(Payment).add(payment)
            logger.warning("Callback arrived after payment expiry", payment_id=str(payment.id))
            return {**result, "expired": True}

        if status == CallbackStatus.PENDING:
            return result

        metadata = json.loads(command.metadata) if command.metadata else {}
        order = load_order(payment.order_id)

        if status == CallbackStatus.PAID:
            payment.mark_paid(command.provider_transaction_id, metadata)
            order.record_payment_success(payment.id, payment.amount)
            if OrderStatus(order.status) in STOCK_RETURNING_STATES:
                # The order was closed while the provider was still collecting
                logger.warning(
                    "Payment completed for a closed order",
                    payment_id=str(payment.id),
                    order_id=str(order.id),
                    order_status=order.status,
                )
                result["refund_required"] = True
        else:
            if payment.status == PaymentStatus.FAILED.value:
                # Already failed locally; the provider only confirms it
                return result
            payment.mark_failed(PROVIDER_DECLINED, command.failure_reason or "Payment declined", metadata)
            order.record_payment_failure(payment.id, reason=command.failure_reason)

        current_domain.repository_for(Payment).add(payment)
        current_domain.repository_for(Order).add(order)

        logger.info(
            "Payment callback applied",
            payment_id=str(payment.id),
            order_id=str(order.id),
            status=payment.status,
        )
        return {**result, "applied": True}
