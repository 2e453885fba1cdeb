"""Business settings for the storefront core.

Infrastructure (database, broker, event store) is configured in
``domain.toml``; the values here tune the order, payment and notification
policies and are read from the environment.
"""

import os
from dataclasses import dataclass, field


def _int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return value.lower() not in ("0", "off", "false", "no")


def _list(name: str) -> tuple[str, ...]:
    value = os.getenv(name, "")
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    # Payments
    payment_retry_limit: int = 3
    payment_retry_interval_seconds: int = 120
    payment_timeout_minutes: int = 30
    refund_window_days: int = 30
    provider_timeout_seconds: float = 10.0
    currency: str = "KES"
    # Provider status is queried only for payments pending longer than this
    status_query_after_seconds: int = 30

    # Pricing
    tax_rate: float = 0.0
    shipping_flat: float = 0.0

    # Inventory
    low_stock_threshold: int = 10

    # Notifications
    rate_limit_window_seconds: int = 15 * 60
    rate_limit_max: int = 100
    delivery_attempt_cap: int = 3
    retry_recency_hours: int = 24
    ack_timeout_seconds: float = 5.0
    notification_retention_days: int = 90
    admin_user_ids: tuple[str, ...] = field(default_factory=tuple)
    deliver_in_background: bool = True
    delivery_workers: int = 4

    # Sweeps
    abandoned_after_hours: int = 24
    sweep_notifications_seconds: int = 3600
    sweep_checkouts_seconds: int = 86400
    sweep_payments_seconds: int = 300
    sweep_purge_seconds: int = 86400

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            payment_retry_limit=_int("STOREFRONT_PAYMENT_RETRY_LIMIT", 3),
            payment_retry_interval_seconds=_int("STOREFRONT_PAYMENT_RETRY_INTERVAL_SECONDS", 120),
            payment_timeout_minutes=_int("STOREFRONT_PAYMENT_TIMEOUT_MINUTES", 30),
            refund_window_days=_int("STOREFRONT_REFUND_WINDOW_DAYS", 30),
            provider_timeout_seconds=_float("STOREFRONT_PROVIDER_TIMEOUT_SECONDS", 10.0),
            currency=os.getenv("STOREFRONT_CURRENCY", "KES"),
            status_query_after_seconds=_int("STOREFRONT_STATUS_QUERY_AFTER_SECONDS", 30),
            tax_rate=_float("STOREFRONT_TAX_RATE", 0.0),
            shipping_flat=_float("STOREFRONT_SHIPPING_FLAT", 0.0),
            low_stock_threshold=_int("STOREFRONT_LOW_STOCK_THRESHOLD", 10),
            rate_limit_window_seconds=_int("STOREFRONT_RATE_LIMIT_WINDOW_SECONDS", 15 * 60),
            rate_limit_max=_int("STOREFRONT_RATE_LIMIT_MAX", 100),
            delivery_attempt_cap=_int("STOREFRONT_DELIVERY_ATTEMPT_CAP", 3),
            retry_recency_hours=_int("STOREFRONT_RETRY_RECENCY_HOURS", 24),
            ack_timeout_seconds=_float("STOREFRONT_ACK_TIMEOUT_SECONDS", 5.0),
            notification_retention_days=_int("STOREFRONT_NOTIFICATION_RETENTION_DAYS", 90),
            admin_user_ids=_list("STOREFRONT_ADMIN_USER_IDS"),
            deliver_in_background=_bool("STOREFRONT_DELIVER_IN_BACKGROUND", True),
            delivery_workers=_int("STOREFRONT_DELIVERY_WORKERS", 4),
            abandoned_after_hours=_int("STOREFRONT_ABANDONED_AFTER_HOURS", 24),
            sweep_notifications_seconds=_int("STOREFRONT_SWEEP_NOTIFICATIONS_SECONDS", 3600),
            sweep_checkouts_seconds=_int("STOREFRONT_SWEEP_CHECKOUTS_SECONDS", 86400),
            sweep_payments_seconds=_int("STOREFRONT_SWEEP_PAYMENTS_SECONDS", 300),
            sweep_purge_seconds=_int("STOREFRONT_SWEEP_PURGE_SECONDS", 86400),
        )
