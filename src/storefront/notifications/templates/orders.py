"""Templates for order confirmation and status updates."""

from storefront.notifications.content import NotificationContent
from storefront.notifications.notification import NotificationPriority, NotificationType

_URGENT_ORDER_STATES = {"cancelled", "refunded"}


class OrderPlacedTemplate:
    name = "order_placed"

    @staticmethod
    def render(context: dict) -> NotificationContent:
        order_id = context["order_id"]
        order_number = context.get("order_number") or order_id
        return NotificationContent(
            notification_type=NotificationType.ORDER.value,
            title="Order Confirmed",
            message=f"Your order #{order_number} has been confirmed and is being processed.",
            priority=NotificationPriority.MEDIUM.value,
            link=f"/orders/{order_id}",
            extra_data={"order_id": order_id, "total": context.get("total")},
        )


class OrderStatusTemplate:
    name = "order_status"

    @staticmethod
    def render(context: dict) -> NotificationContent:
        order_id = context["order_id"]
        order_number = context.get("order_number") or order_id
        status = context["status"]
        message = f"Your order #{order_number} has been {status}"
        if context.get("tracking_number"):
            message = f"{message}. Tracking number: {context['tracking_number']}"
        return NotificationContent(
            notification_type=NotificationType.ORDER.value,
            title="Order Update",
            message=message,
            priority=(
                NotificationPriority.HIGH.value if status in _URGENT_ORDER_STATES else NotificationPriority.MEDIUM.value
            ),
            link=f"/orders/{order_id}",
            extra_data={"order_id": order_id, "status": status},
        )
