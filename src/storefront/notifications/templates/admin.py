"""Admin-facing templates."""

from storefront.notifications.content import NotificationContent
from storefront.notifications.notification import NotificationPriority, NotificationType


class LowInventoryTemplate:
    name = "low_inventory"

    @staticmethod
    def render(context: dict) -> NotificationContent:
        product_id = context["product_id"]
        count = context["stock"]
        threshold = context["threshold"]
        return NotificationContent(
            notification_type=NotificationType.INVENTORY_ALERT.value,
            title="Low Inventory Alert",
            message=f"{context.get('name', product_id)} is low on stock ({count}/{threshold} remaining)",
            priority=NotificationPriority.HIGH.value,
            link=f"/admin/products/{product_id}",
            extra_data={"product_id": product_id, "count": count, "threshold": threshold},
        )


class NewPaidOrderTemplate:
    name = "new_paid_order"

    @staticmethod
    def render(context: dict) -> NotificationContent:
        order_id = context["order_id"]
        order_number = context.get("order_number") or order_id
        return NotificationContent(
            notification_type=NotificationType.ADMIN_ALERT.value,
            title="New Paid Order",
            message=f"Order #{order_number} was paid ({context.get('amount')} via {context.get('provider')})",
            priority=NotificationPriority.MEDIUM.value,
            link=f"/admin/orders/{order_id}",
            extra_data={"order_id": order_id, "amount": context.get("amount"), "provider": context.get("provider")},
        )


class SystemAnnouncementTemplate:
    name = "system_announcement"

    @staticmethod
    def render(context: dict) -> NotificationContent:
        return NotificationContent(
            notification_type=context.get("notification_type", NotificationType.SYSTEM.value),
            title=context["title"],
            message=context["message"],
            priority=context.get("priority", NotificationPriority.MEDIUM.value),
            link=context.get("link"),
            extra_data=context.get("data") or {},
            expires_at=context.get("expires_at"),
        )
