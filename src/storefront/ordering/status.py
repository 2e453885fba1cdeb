"""Command and handler for order status changes.

Entering cancelled or refunded returns every line's stock in the same unit
of work as the status write, so stock comes back if and only if the status
change commits.
"""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.inventory.ledger import release_many
from storefront.ordering.lookup import load_order
from storefront.ordering.order import STOCK_RETURNING_STATES, Order, OrderStatus


@storefront.command(part_of="Order")
class ChangeOrderStatus:
    order_id = Identifier(required=True)
    status = String(choices=OrderStatus, required=True)
    actor = String(max_length=255)
    tracking_number = String(max_length=64)
    reason = String(max_length=500)


@storefront.command_handler(part_of=Order)
class ChangeOrderStatusHandler:
    @handle(ChangeOrderStatus)
    def change_status(self, command):
        order = load_order(command.order_id)
        target = OrderStatus(command.status)
        was_paid = order.is_paid

        previous = order.transition_to(
            target,
            actor=command.actor,
            tracking_number=command.tracking_number,
            reason=command.reason,
        )

        released = []
        if target in STOCK_RETURNING_STATES:
            released = release_many(order.stock_requirements(), order_id=str(order.id))

        current_domain.repository_for(Order).add(order)

        return {
            "order_id": str(order.id),
            "previous_status": previous,
            "status": order.status,
            "was_paid": was_paid,
            "stock_changes": released,
        }
