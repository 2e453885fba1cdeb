"""Commands and handler for payment refunds and expiry.

The provider refund has already succeeded by the time ``MarkPaymentRefunded``
runs; this records it against the payment and the order, returning the
order's stock when the order itself becomes refunded.
"""

from protean import handle
from protean.fields import DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.errors import RefundNotEligible
from storefront.inventory.ledger import release_many
from storefront.ordering.lookup import load_order
from storefront.ordering.order import Order, OrderStatus
from storefront.payments.lookup import load_payment
from storefront.payments.payment import Payment
from storefront.utils.clock import as_utc, utc_now


@storefront.command(part_of="Payment")
class MarkPaymentRefunded:
    payment_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    actor = String(required=True, max_length=255)
    refund_window_days = Integer(required=True, min_value=0)


@storefront.command(part_of="Payment")
class ExpirePayment:
    payment_id = Identifier(required=True)
    as_of = DateTime()


@storefront.command_handler(part_of=Payment)
class PaymentSettlementHandler:
    @handle(MarkPaymentRefunded)
    def mark_refunded(self, command):
        payment = load_payment(command.payment_id)
        reason = payment.refund_ineligibility(command.refund_window_days)
        if reason:
            raise RefundNotEligible(payment.id, reason)

        order = load_order(payment.order_id)
        previous_status = order.status
        released = []
        if order.can_transition_to(OrderStatus.REFUNDED):
            order.transition_to(OrderStatus.REFUNDED, actor=command.actor, reason=command.reason)
            released = release_many(order.stock_requirements(), order_id=str(order.id))
        order.record_refund(payment.id)
        payment.mark_refunded(command.reason, command.actor)

        current_domain.repository_for(Payment).add(payment)
        current_domain.repository_for(Order).add(order)

        return {
            "payment_id": str(payment.id),
            "order_id": str(order.id),
            "previous_order_status": previous_status,
            "order_status": order.status,
            "stock_changes": released,
        }

    @handle(ExpirePayment)
    def expire(self, command):
        """Expire an open payment that is past its deadline. Returns True when it did."""
        payment = load_payment(command.payment_id)
        if not payment.is_open or not payment.is_past_expiry(as_utc(command.as_of) or utc_now()):
            return False

        payment.expire()
        current_domain.repository_for(Payment).add(payment)
        return True
