"""Order lifecycle manager.

Entry point for placing orders and moving them through their states. Each
write runs as one command while the locks of the order and its products are
held; notifications, emails and payment refunds follow the commit and are
best-effort.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog
from protean.utils.globals import current_domain

from storefront.config import Settings
from storefront.effects import SideEffectResult, best_effort
from storefront.errors import OrderNotFound, ValidationError
from storefront.inventory.product import StockChange
from storefront.notifications.channel import get_email_channel
from storefront.notifications.channel.email_port import EmailPort
from storefront.notifications.service import NotificationService
from storefront.ordering.abandonment import RemindAbandonedCheckout, idle_checkouts
from storefront.ordering.lookup import load_order, orders_for_user
from storefront.ordering.order import STOCK_RETURNING_STATES, Order, OrderStatus
from storefront.ordering.placement import PlaceOrder, parse_lines
from storefront.ordering.status import ChangeOrderStatus
from storefront.payments.gateway.port import ProviderName
from storefront.payments.lookup import paid_payment_for_order
from storefront.payments.manager import PaymentTransactionManager
from storefront.utils.clock import as_utc, utc_now
from storefront.utils.locks import KeyedLocks, order_key, product_key

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OrderResult:
    order: Order
    low_stock_product_ids: list[str] = field(default_factory=list)
    side_effects: list[SideEffectResult] = field(default_factory=list)


def _email_data(order: Order, **extra) -> dict:
    return {
        "order_id": str(order.id),
        "order_number": order.order_number,
        "status": order.status,
        "total": order.total,
        "items": [
            {"name": line.name, "quantity": line.quantity, "unit_price": line.unit_price, "line_total": line.line_total}
            for line in order.lines
        ],
        **extra,
    }


class OrderLifecycleManager:
    def __init__(
        self,
        settings: Settings | None = None,
        notifications: NotificationService | None = None,
        payments: PaymentTransactionManager | None = None,
        email: EmailPort | None = None,
        locks: KeyedLocks | None = None,
    ):
        self.settings = settings or Settings()
        self.locks = locks or KeyedLocks()
        self.notifications = notifications or NotificationService(self.settings)
        self.payments = payments or PaymentTransactionManager(
            self.settings, notifications=self.notifications, locks=self.locks
        )
        self._email = email

    @property
    def email(self) -> EmailPort:
        return self._email or get_email_channel()

    def _send_email(self, order: Order, template_name: str, data: dict) -> SideEffectResult | None:
        if not order.contact_email:
            return None
        return best_effort(f"{template_name}_email", self.email.send, order.contact_email, template_name, data)

    # -------------------------------------------------------------------
    # Placement
    # -------------------------------------------------------------------
    def create_order(self, user_id, lines, shipping_address: dict, payment_method, contact_email=None) -> OrderResult:
        """Place an order and reserve stock for every line, atomically.

        Raises ``ValidationError`` for malformed input and
        ``InsufficientStock`` / ``ProductNotFound`` when any line cannot be
        reserved; in every failure case nothing is written.
        """
        if not user_id:
            raise ValidationError("An order needs a user")
        try:
            method = ProviderName(str(payment_method).lower())
        except ValueError:
            raise ValidationError(f"Unsupported payment method: {payment_method}", {"payment_method": payment_method})
        if not isinstance(shipping_address, dict):
            raise ValidationError("Shipping address must be an object")

        parsed = parse_lines(lines)
        keys = [product_key(line["product_id"]) for line in parsed]

        with self.locks.hold(*keys):
            placed = current_domain.process(
                PlaceOrder(
                    user_id=str(user_id),
                    lines=json.dumps(parsed),
                    shipping_address=json.dumps(shipping_address),
                    payment_method=method.value,
                    contact_email=contact_email,
                    tax_rate=self.settings.tax_rate,
                    shipping_amount=self.settings.shipping_flat,
                ),
                asynchronous=False,
            )

        order = load_order(placed["order_id"])
        logger.info(
            "Order placed",
            order_id=str(order.id),
            order_number=order.order_number,
            user_id=str(user_id),
            total=order.total,
        )

        side_effects = [
            best_effort(
                "order_placed_notification",
                self.notifications.notify,
                order.user_id,
                "order_placed",
                {"order_id": str(order.id), "order_number": order.order_number, "total": order.total},
            )
        ]
        email = self._send_email(order, "order_confirmation", _email_data(order))
        if email:
            side_effects.append(email)

        low_stock = [change for change in placed["stock_changes"] if change.is_low]
        side_effects.extend(self._alert_low_stock(low_stock))

        return OrderResult(
            order=order,
            low_stock_product_ids=[change.product_id for change in low_stock],
            side_effects=side_effects,
        )

    def _alert_low_stock(self, changes: list[StockChange]) -> list[SideEffectResult]:
        return [
            best_effort(
                "low_stock_alert",
                self.notifications.notify_admins,
                "low_inventory",
                {
                    "product_id": change.product_id,
                    "name": change.name,
                    "stock": change.new_stock,
                    "threshold": change.threshold,
                },
            )
            for change in changes
        ]

    # -------------------------------------------------------------------
    # Status changes
    # -------------------------------------------------------------------
    def update_status(self, order_id, new_status, actor, tracking_number=None, reason=None) -> OrderResult:
        try:
            target = OrderStatus(str(new_status).lower())
        except ValueError:
            raise ValidationError(f"Unknown order status: {new_status}", {"status": new_status})

        order = load_order(order_id)
        keys = [order_key(order.id)] + [product_key(product_id) for product_id in order.stock_requirements()]

        with self.locks.hold(*keys):
            changed = current_domain.process(
                ChangeOrderStatus(
                    order_id=str(order.id),
                    status=target.value,
                    actor=str(actor) if actor else None,
                    tracking_number=tracking_number,
                    reason=reason,
                ),
                asynchronous=False,
            )

        order = load_order(order.id)
        logger.info(
            "Order status changed",
            order_id=str(order.id),
            previous_status=changed["previous_status"],
            status=order.status,
            actor=actor,
        )

        side_effects = [
            best_effort(
                "order_status_notification",
                self.notifications.notify,
                order.user_id,
                "order_status",
                {
                    "order_id": str(order.id),
                    "order_number": order.order_number,
                    "status": order.status,
                    "tracking_number": order.tracking_number if target == OrderStatus.SHIPPED else None,
                },
            )
        ]
        email = self._send_email(
            order,
            "order_status",
            _email_data(order, previous_status=changed["previous_status"], tracking_number=order.tracking_number),
        )
        if email:
            side_effects.append(email)

        if changed["was_paid"] and target in STOCK_RETURNING_STATES:
            payment = paid_payment_for_order(order.id)
            if payment is None:
                logger.warning("Paid order has no refundable payment", order_id=str(order.id))
            else:
                side_effects.append(
                    best_effort(
                        "payment_refund",
                        self.payments.refund,
                        payment.id,
                        reason or f"Order {order.status}",
                        str(actor) if actor else "system",
                    )
                )
            order = load_order(order.id)

        return OrderResult(order=order, side_effects=side_effects)

    def cancel_order(self, order_id, actor, reason=None, user_id=None) -> OrderResult:
        """Cancel an order. When ``user_id`` is given, the order must be theirs."""
        if user_id is not None:
            self.get_order(order_id, user_id=user_id)
        return self.update_status(order_id, OrderStatus.CANCELLED.value, actor, reason=reason)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_order(self, order_id, user_id=None) -> Order:
        order = load_order(order_id)
        if user_id is not None and str(order.user_id) != str(user_id):
            raise OrderNotFound(order_id)
        return order

    def list_orders(self, user_id) -> list[Order]:
        return orders_for_user(user_id)

    # -------------------------------------------------------------------
    # Sweeps
    # -------------------------------------------------------------------
    def detect_abandoned_checkouts(self, as_of: datetime | None = None, idle_hours: int | None = None) -> int:
        """Send one reminder email per idle, unpaid checkout. Returns how many were reminded."""
        as_of = as_utc(as_of) or utc_now()
        idle_hours = idle_hours or self.settings.abandoned_after_hours
        cutoff = as_of - timedelta(hours=idle_hours)

        reminded = 0
        for candidate in idle_checkouts(cutoff):
            with self.locks.hold(order_key(candidate.id)):
                entry = current_domain.process(
                    RemindAbandonedCheckout(order_id=str(candidate.id), idle_threshold_hours=idle_hours, as_of=as_of),
                    asynchronous=False,
                )
            if entry is None:
                continue
            reminded += 1
            if not entry["contact_email"]:
                continue
            best_effort(
                "abandoned_checkout_email",
                self.email.send,
                entry["contact_email"],
                "abandoned_checkout",
                {"order_id": entry["order_id"], "order_number": entry["order_number"], "total": entry["total"]},
            )
        logger.info("Abandoned checkout sweep complete", reminded=reminded)
        return reminded
