"""Abandoned checkout detection for idle unpaid orders.

Triggered periodically by the sweep runner (or ``manage.py sweep``). The
manager lists candidates with ``idle_checkouts`` and sends each one through
``RemindAbandonedCheckout`` under the order's lock; the handler re-checks
the order and stamps ``reminder_sent_at`` so it is reminded only once.
"""

from datetime import datetime, timedelta

import structlog
from protean import handle
from protean.fields import DateTime, Identifier, Integer
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.ordering.lookup import load_order
from storefront.ordering.order import Order, OrderPaymentStatus, OrderStatus
from storefront.utils.clock import as_utc, utc_now

logger = structlog.get_logger(__name__)


def _is_idle(order: Order, cutoff: datetime) -> bool:
    if order.status != OrderStatus.PENDING.value:
        return False
    if order.payment_status == OrderPaymentStatus.PAID.value or order.reminder_sent_at:
        return False
    last_touched = as_utc(order.updated_at or order.created_at)
    return last_touched is not None and last_touched <= cutoff


def idle_checkouts(cutoff: datetime) -> list[Order]:
    repo = current_domain.repository_for(Order)
    pending = repo._dao.query.filter(status=OrderStatus.PENDING.value).all().items
    return [order for order in pending if _is_idle(order, cutoff)]


@storefront.command(part_of="Order")
class RemindAbandonedCheckout:
    """Flag one pending, unpaid order idle beyond the specified threshold."""

    order_id = Identifier(required=True)
    idle_threshold_hours = Integer(default=24)
    as_of = DateTime()  # Optional: defaults to now


@storefront.command_handler(part_of=Order)
class RemindAbandonedCheckoutHandler:
    @handle(RemindAbandonedCheckout)
    def remind(self, command):
        as_of = as_utc(command.as_of) or utc_now()
        cutoff = as_of - timedelta(hours=command.idle_threshold_hours or 24)

        order = load_order(command.order_id)
        if not _is_idle(order, cutoff):
            return None

        order.mark_reminded(as_of)
        current_domain.repository_for(Order).add(order)
        logger.info("Abandoned checkout flagged", order_id=str(order.id), user_id=str(order.user_id))

        return {
            "order_id": str(order.id),
            "order_number": order.order_number,
            "user_id": str(order.user_id),
            "contact_email": order.contact_email,
            "total": order.total,
        }
