"""Order aggregate (CQRS) — the consistency boundary for a customer's purchase.

An order embeds its lines and shipping address. Totals are always derived
from the lines plus tax and shipping; nothing sets ``total`` directly.
Orders are never deleted: cancelled and refunded are terminal states.

State Machine:
    PENDING -> PROCESSING -> SHIPPED -> DELIVERED
    PENDING/PROCESSING -> CANCELLED
    PENDING/PROCESSING/SHIPPED/DELIVERED -> REFUNDED   (paid orders only)
"""

import json
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError as FieldValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, Integer, String, ValueObject

from storefront.domain import storefront
from storefront.errors import (
    AlreadyPaid,
    InvalidTransition,
    OrderNotPayable,
    RetryLimitExceeded,
    ValidationError,
)
from storefront.ordering.events import (
    CheckoutAbandoned,
    OrderPaid,
    OrderPaymentAttempted,
    OrderPaymentFailed,
    OrderPaymentRefunded,
    OrderPlaced,
    OrderStatusChanged,
)
from storefront.ordering.tracking import generate_order_number, generate_tracking_number
from storefront.payments.gateway.port import ProviderName
from storefront.utils.clock import utc_now


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class OrderPaymentStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED, OrderStatus.REFUNDED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.REFUNDED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.REFUNDED: set(),  # Terminal
}

# Entering these states hands reserved stock back to the ledger
STOCK_RETURNING_STATES = {OrderStatus.CANCELLED, OrderStatus.REFUNDED}


def _money(value: float) -> float:
    return round(float(value), 2)


def compute_totals(lines: list[dict], tax_rate: float, shipping_amount: float) -> dict:
    """Derive line totals and order totals from raw line data."""
    priced = []
    for line in lines:
        priced.append({**line, "line_total": _money(line["unit_price"] * line["quantity"])})
    subtotal = _money(sum(line["line_total"] for line in priced))
    tax_amount = _money(subtotal * tax_rate)
    shipping_amount = _money(shipping_amount)
    return {
        "lines": priced,
        "subtotal": subtotal,
        "tax_amount": tax_amount,
        "shipping_amount": shipping_amount,
        "total": _money(subtotal + tax_amount + shipping_amount),
    }


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@storefront.value_object(part_of="Order")
class ShippingAddress:
    street = String(required=True, max_length=255)
    city = String(required=True, max_length=100)
    state = String(max_length=100)
    country = String(required=True, max_length=100)
    zip_code = String(max_length=20)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@storefront.entity(part_of="Order")
class OrderLine:
    """A product and quantity, with the unit price captured at checkout."""

    product_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    line_total = Float(required=True, min_value=0.0)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@storefront.aggregate
class Order:
    order_number = String(required=True, max_length=32)
    user_id = Identifier(required=True)
    contact_email = String(max_length=255)
    lines = HasMany(OrderLine)
    shipping_address = ValueObject(ShippingAddress)
    payment_method = String(choices=ProviderName, required=True)
    payment_status = String(choices=OrderPaymentStatus, default=OrderPaymentStatus.PENDING.value)
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)

    # Pricing
    subtotal = Float(default=0.0)
    tax_amount = Float(default=0.0)
    shipping_amount = Float(default=0.0)
    total = Float(default=0.0)

    # Fulfilment
    tracking_number = String(max_length=64)
    cancellation_reason = String(max_length=500)
    last_actor = String(max_length=255)

    # Payment attempts since the last successful payment
    payment_retry_count = Integer(default=0, min_value=0)

    # Timestamps
    reminder_sent_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()
    paid_at = DateTime()
    shipped_at = DateTime()
    delivered_at = DateTime()
    cancelled_at = DateTime()
    refunded_at = DateTime()

    @invariant.post
    def total_is_derived_from_lines_tax_and_shipping(self):
        expected = sum(line.line_total for line in (self.lines or [])) + (self.tax_amount or 0.0)
        expected += self.shipping_amount or 0.0
        if abs((self.total or 0.0) - expected) > 0.005:
            raise FieldValidationError({"total": ["Total must equal line totals plus tax and shipping"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        user_id,
        lines,
        shipping_address,
        payment_method,
        tax_rate=0.0,
        shipping_amount=0.0,
        contact_email=None,
    ):
        """Create a new order from priced line data.

        Args:
            user_id: The customer placing the order.
            lines: List of dicts with product_id, name, quantity, unit_price.
            shipping_address: Dict with street, city, state, country, zip_code.
            payment_method: One of the ProviderName values.
        """
        if not lines:
            raise ValidationError("An order needs at least one line")

        totals = compute_totals(lines, tax_rate, shipping_amount)
        now = utc_now()

        order = cls(
            order_number=generate_order_number(now),
            user_id=user_id,
            contact_email=contact_email,
            lines=[
                OrderLine(
                    product_id=line["product_id"],
                    name=line["name"],
                    quantity=line["quantity"],
                    unit_price=line["unit_price"],
                    line_total=line["line_total"],
                )
                for line in totals["lines"]
            ],
            shipping_address=ShippingAddress(**shipping_address),
            payment_method=payment_method,
            payment_status=OrderPaymentStatus.PENDING.value,
            status=OrderStatus.PENDING.value,
            subtotal=totals["subtotal"],
            tax_amount=totals["tax_amount"],
            shipping_amount=totals["shipping_amount"],
            total=totals["total"],
            payment_retry_count=0,
            created_at=now,
            updated_at=now,
        )

        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order.order_number,
                user_id=str(user_id),
                lines=json.dumps(
                    [
                        {
                            "product_id": str(line["product_id"]),
                            "quantity": line["quantity"],
                            "unit_price": line["unit_price"],
                        }
                        for line in totals["lines"]
                    ]
                ),
                payment_method=payment_method,
                total=order.total,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def is_paid(self) -> bool:
        return self.payment_status == OrderPaymentStatus.PAID.value

    def stock_requirements(self) -> dict[str, int]:
        """Quantity per product across all lines."""
        requirements: dict[str, int] = {}
        for line in self.lines:
            key = str(line.product_id)
            requirements[key] = requirements.get(key, 0) + line.quantity
        return requirements

    def can_transition_to(self, target: OrderStatus) -> bool:
        current = OrderStatus(self.status)
        if target not in _VALID_TRANSITIONS.get(current, set()):
            return False
        if target == OrderStatus.REFUNDED and not self.is_paid:
            return False
        return True

    # -------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target: OrderStatus):
        if not self.can_transition_to(target):
            raise InvalidTransition("order", self.status, target.value)

    def transition_to(self, target: OrderStatus, actor=None, tracking_number=None, reason=None) -> str:
        """Move to ``target``, returning the previous status."""
        self._assert_can_transition(target)

        previous = self.status
        now = utc_now()
        self.status = target.value
        self.last_actor = actor
        self.updated_at = now

        if target == OrderStatus.SHIPPED:
            self.tracking_number = tracking_number or self.tracking_number or generate_tracking_number(now=now)
            self.shipped_at = now
        elif target == OrderStatus.DELIVERED:
            self.delivered_at = now
        elif target == OrderStatus.CANCELLED:
            self.cancelled_at = now
            self.cancellation_reason = reason
        elif target == OrderStatus.REFUNDED:
            self.refunded_at = now
            self.cancellation_reason = reason

        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                previous_status=previous,
                new_status=self.status,
                actor=actor,
                tracking_number=self.tracking_number,
                reason=reason,
                changed_at=now,
            )
        )
        return previous

    # -------------------------------------------------------------------
    # Payment bookkeeping
    # -------------------------------------------------------------------
    def assert_payable(self, retry_limit: int):
        """Raise unless a new payment attempt may start for this order."""
        if OrderStatus(self.status) in STOCK_RETURNING_STATES:
            raise OrderNotPayable(self.id, self.status)
        if self.is_paid:
            raise AlreadyPaid(self.id)
        if self.payment_retry_count >= retry_limit:
            raise RetryLimitExceeded(self.id, retry_limit)

    def record_payment_attempt(self, retry_limit: int):
        """Count a new payment attempt, refusing when the order cannot take one."""
        self.assert_payable(retry_limit)

        now = utc_now()
        self.payment_retry_count = self.payment_retry_count + 1
        self.updated_at = now
        self.raise_(
            OrderPaymentAttempted(
                order_id=str(self.id),
                attempt=self.payment_retry_count,
                attempted_at=now,
            )
        )

    def record_payment_success(self, payment_id, amount):
        now = utc_now()
        with atomic_change(self):
            self.payment_status = OrderPaymentStatus.PAID.value
            self.paid_at = now
            self.payment_retry_count = 0
            self.updated_at = now

        self.raise_(
            OrderPaid(
                order_id=str(self.id),
                payment_id=str(payment_id),
                amount=amount,
                paid_at=now,
            )
        )

        if OrderStatus(self.status) == OrderStatus.PENDING:
            self.transition_to(OrderStatus.PROCESSING, actor="system")

    def record_payment_failure(self, payment_id, reason=None):
        if self.is_paid:
            return
        now = utc_now()
        self.payment_status = OrderPaymentStatus.FAILED.value
        self.updated_at = now
        self.raise_(
            OrderPaymentFailed(
                order_id=str(self.id),
                payment_id=str(payment_id),
                reason=reason,
                failed_at=now,
            )
        )

    def record_refund(self, payment_id):
        now = utc_now()
        self.payment_status = OrderPaymentStatus.REFUNDED.value
        self.updated_at = now
        self.raise_(
            OrderPaymentRefunded(
                order_id=str(self.id),
                payment_id=str(payment_id),
                refunded_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Reminders
    # -------------------------------------------------------------------
    def mark_reminded(self, reminded_at=None):
        now = reminded_at or utc_now()
        idle_since = self.updated_at or self.created_at or now
        self.reminder_sent_at = now
        self.raise_(
            CheckoutAbandoned(
                order_id=str(self.id),
                user_id=str(self.user_id),
                idle_since=idle_since,
                reminded_at=now,
            )
        )
