"""Domain events for the Payment aggregate."""

from protean.fields import DateTime, Float, Identifier, String

from storefront.domain import storefront


@storefront.event(part_of="Payment")
class PaymentInitiated:
    __version__ = 1

    payment_id: Identifier(required=True)
    order_id: Identifier(required=True)
    user_id: Identifier(required=True)
    transaction_id: String(required=True)
    provider: String(required=True)
    amount: Float(required=True)
    currency: String(required=True)
    expires_at: DateTime(required=True)
    initiated_at: DateTime(required=True)


@storefront.event(part_of="Payment")
class PaymentSubmitted:
    """The provider accepted the initiation; its callback is now awaited."""

    __version__ = 1

    payment_id: Identifier(required=True)
    provider_reference: String(required=True)
    submitted_at: DateTime(required=True)


@storefront.event(part_of="Payment")
class PaymentSucceeded:
    __version__ = 1

    payment_id: Identifier(required=True)
    order_id: Identifier(required=True)
    amount: Float(required=True)
    provider_transaction_id: String()
    paid_at: DateTime(required=True)


@storefront.event(part_of="Payment")
class PaymentFailed:
    __version__ = 1

    payment_id: Identifier(required=True)
    order_id: Identifier(required=True)
    error_code: String(required=True)
    error_message: String()
    failed_at: DateTime(required=True)


@storefront.event(part_of="Payment")
class PaymentExpired:
    __version__ = 1

    payment_id: Identifier(required=True)
    order_id: Identifier(required=True)
    expired_at: DateTime(required=True)


@storefront.event(part_of="Payment")
class PaymentRefunded:
    __version__ = 1

    payment_id: Identifier(required=True)
    order_id: Identifier(required=True)
    amount: Float(required=True)
    reason: String()
    refunded_by: String()
    refunded_at: DateTime(required=True)
