"""Typed failures raised by the storefront core.

Every error carries a machine-readable ``kind`` (used by the HTTP layer to
choose a status code) and a human-readable message. Handlers raise these
before or inside a unit of work, so a raised error never leaves a partially
applied change behind.
"""


class StorefrontError(Exception):
    """Base exception for all storefront failures."""

    kind = "error"

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "details": self.details}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
class ValidationError(StorefrontError):
    """Malformed input, caught before any mutation."""

    kind = "validation"


class SignatureError(ValidationError):
    """A provider callback failed authenticity verification."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Invalid {provider} callback signature", {"provider": provider})


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------
class NotFoundError(StorefrontError):
    kind = "not_found"


class ProductNotFound(NotFoundError):
    def __init__(self, product_id: str):
        self.product_id = str(product_id)
        super().__init__(f"Product not found: {product_id}", {"product_id": self.product_id})


class OrderNotFound(NotFoundError):
    def __init__(self, order_id: str):
        self.order_id = str(order_id)
        super().__init__(f"Order not found: {order_id}", {"order_id": self.order_id})


class PaymentNotFound(NotFoundError):
    def __init__(self, payment_id: str):
        self.payment_id = str(payment_id)
        super().__init__(f"Payment not found: {payment_id}", {"payment_id": self.payment_id})


class NotificationNotFound(NotFoundError):
    def __init__(self, notification_id: str):
        self.notification_id = str(notification_id)
        super().__init__(
            f"Notification not found: {notification_id}",
            {"notification_id": self.notification_id},
        )


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------
class ConflictError(StorefrontError):
    kind = "conflict"


class InvalidTransition(ConflictError):
    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot transition {entity} from {current} to {target}",
            {"entity": entity, "current": current, "target": target},
        )


class InsufficientStock(ConflictError):
    def __init__(self, product_id: str, requested: int, available: int, reason: str | None = None):
        self.product_id = str(product_id)
        self.requested = requested
        self.available = available
        message = f"Insufficient stock for product {product_id}: requested {requested}, available {available}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(
            message,
            {"product_id": self.product_id, "requested": requested, "available": available},
        )


class AlreadyPaid(ConflictError):
    def __init__(self, order_id: str):
        self.order_id = str(order_id)
        super().__init__(f"Order {order_id} is already paid", {"order_id": self.order_id})


class OrderNotPayable(ConflictError):
    def __init__(self, order_id: str, status: str):
        self.order_id = str(order_id)
        super().__init__(
            f"Order {order_id} cannot be paid in status {status}",
            {"order_id": self.order_id, "status": status},
        )


class PaymentInProgress(ConflictError):
    def __init__(self, order_id: str, payment_id: str):
        self.order_id = str(order_id)
        self.payment_id = str(payment_id)
        super().__init__(
            f"A payment attempt for order {order_id} is still in progress",
            {"order_id": self.order_id, "payment_id": self.payment_id},
        )


class RetryLimitExceeded(ConflictError):
    def __init__(self, order_id: str, limit: int):
        self.order_id = str(order_id)
        self.limit = limit
        super().__init__(
            f"Payment retry limit of {limit} reached for order {order_id}",
            {"order_id": self.order_id, "limit": limit},
        )


class RefundNotEligible(ConflictError):
    def __init__(self, payment_id: str, reason: str):
        self.payment_id = str(payment_id)
        self.reason = reason
        super().__init__(
            f"Payment {payment_id} is not eligible for refund: {reason}",
            {"payment_id": self.payment_id, "reason": reason},
        )


# ---------------------------------------------------------------------------
# Throttling, providers, timeouts
# ---------------------------------------------------------------------------
class RateLimitExceeded(StorefrontError):
    kind = "rate_limited"

    def __init__(self, key: str, limit: int, window_seconds: int):
        self.key = key
        self.limit = limit
        self.window_seconds = window_seconds
        super().__init__(
            f"Rate limit of {limit} per {window_seconds}s exceeded",
            {"limit": limit, "window_seconds": window_seconds},
        )


class ProviderError(StorefrontError):
    """An external payment provider failed. May be transient."""

    kind = "provider"
    code = "PROVIDER_ERROR"

    def __init__(self, provider: str, message: str, retryable: bool = True):
        self.provider = provider
        self.retryable = retryable
        super().__init__(message, {"provider": provider, "retryable": retryable})


class ProviderTimeout(ProviderError):
    code = "PROVIDER_TIMEOUT"

    def __init__(self, provider: str):
        super().__init__(provider, f"{provider} did not respond in time", retryable=True)


class EmailRejected(StorefrontError):
    """The mail provider refused a message."""

    kind = "email"

    def __init__(self, to_address: str, template_name: str, reason: str):
        self.to_address = to_address
        self.template_name = template_name
        super().__init__(f"Email {template_name!r} refused: {reason}", {"template": template_name})


class ExpiredError(StorefrontError):
    kind = "expired"

    def __init__(self, payment_id: str, expired_at):
        self.payment_id = str(payment_id)
        super().__init__(
            f"Payment {payment_id} expired at {expired_at.isoformat() if expired_at else 'unknown'}",
            {"payment_id": self.payment_id},
        )
