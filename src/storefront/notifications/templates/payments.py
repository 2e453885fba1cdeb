"""Templates for payment outcomes and refunds."""

from storefront.notifications.content import NotificationContent
from storefront.notifications.notification import NotificationPriority, NotificationType


class PaymentStatusTemplate:
    name = "payment_status"

    @staticmethod
    def render(context: dict) -> NotificationContent:
        order_id = context["order_id"]
        order_number = context.get("order_number") or order_id
        status = context["status"]
        amount = context.get("amount")
        return NotificationContent(
            notification_type=NotificationType.PAYMENT.value,
            title="Payment Update",
            message=f"Payment of {amount} for order #{order_number} has been {status}",
            priority=NotificationPriority.HIGH.value if status == "failed" else NotificationPriority.MEDIUM.value,
            link=f"/orders/{order_id}",
            extra_data={
                "order_id": order_id,
                "payment_id": context.get("payment_id"),
                "amount": amount,
                "status": status,
            },
        )


class PaymentRefundedTemplate:
    name = "payment_refunded"

    @staticmethod
    def render(context: dict) -> NotificationContent:
        order_id = context["order_id"]
        order_number = context.get("order_number") or order_id
        message = f"Your payment of {context.get('amount')} for order #{order_number} has been refunded"
        if context.get("reason"):
            message = f"{message}. Reason: {context['reason']}"
        return NotificationContent(
            notification_type=NotificationType.PAYMENT.value,
            title="Refund Processed",
            message=message,
            priority=NotificationPriority.HIGH.value,
            link=f"/orders/{order_id}",
            extra_data={
                "order_id": order_id,
                "payment_id": context.get("payment_id"),
                "amount": context.get("amount"),
                "status": "refunded",
            },
        )
