"""Domain events for the Order aggregate."""

from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from storefront.domain import storefront


@storefront.event(part_of="Order")
class OrderPlaced:
    """An order was created and its stock reserved."""

    __version__ = 1

    order_id: Identifier(required=True)
    order_number: String(required=True)
    user_id: Identifier(required=True)
    lines: Text(required=True)  # JSON: [{product_id, quantity, unit_price}]
    payment_method: String(required=True)
    total: Float(required=True)
    placed_at: DateTime(required=True)


@storefront.event(part_of="Order")
class OrderStatusChanged:
    __version__ = 1

    order_id: Identifier(required=True)
    previous_status: String(required=True)
    new_status: String(required=True)
    actor: String()
    tracking_number: String()
    reason: String()
    changed_at: DateTime(required=True)


@storefront.event(part_of="Order")
class OrderPaymentAttempted:
    __version__ = 1

    order_id: Identifier(required=True)
    attempt: Integer(required=True)
    attempted_at: DateTime(required=True)


@storefront.event(part_of="Order")
class OrderPaid:
    __version__ = 1

    order_id: Identifier(required=True)
    payment_id: Identifier(required=True)
    amount: Float(required=True)
    paid_at: DateTime(required=True)


@storefront.event(part_of="Order")
class OrderPaymentFailed:
    __version__ = 1

    order_id: Identifier(required=True)
    payment_id: Identifier(required=True)
    reason: String()
    failed_at: DateTime(required=True)


@storefront.event(part_of="Order")
class OrderPaymentRefunded:
    __version__ = 1

    order_id: Identifier(required=True)
    payment_id: Identifier(required=True)
    refunded_at: DateTime(required=True)


@storefront.event(part_of="Order")
class CheckoutAbandoned:
    """A pending, unpaid order sat idle long enough to warrant a reminder."""

    __version__ = 1

    order_id: Identifier(required=True)
    user_id: Identifier(required=True)
    idle_since: DateTime(required=True)
    reminded_at: DateTime(required=True)
