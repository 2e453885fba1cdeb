"""Notification aggregate (CQRS) — an in-app message addressed to one user.

Notifications are stored first and delivered afterwards over the real-time
transport. Delivery is best-effort: a missed delivery bumps
``delivery_attempts`` (never past the cap) and leaves the notification for
the retry sweep. Users read and delete their own notifications; expired ones
are purged by the storage sweep.
"""

import json
from datetime import datetime
from enum import Enum

from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text

from storefront.domain import storefront
from storefront.notifications.events import (
    NotificationCreated,
    NotificationDelivered,
    NotificationDeliveryMissed,
    NotificationRead,
)
from storefront.utils.clock import as_utc, utc_now


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class NotificationType(Enum):
    ORDER = "order"
    PAYMENT = "payment"
    SYSTEM = "system"
    PROMOTION = "promotion"
    SECURITY = "security"
    PRODUCT = "product"
    REVIEW = "review"
    WISHLIST = "wishlist"
    ADMIN_ALERT = "admin_alert"
    SYSTEM_STATUS = "system_status"
    USER_REPORT = "user_report"
    INVENTORY_ALERT = "inventory_alert"
    SALES_MILESTONE = "sales_milestone"


class NotificationPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@storefront.aggregate
class Notification:
    user_id: Identifier(required=True)
    notification_type: String(choices=NotificationType, required=True)
    title: String(required=True, max_length=200)
    message: Text(required=True)
    priority: String(choices=NotificationPriority, default=NotificationPriority.MEDIUM.value)
    link: String(max_length=500)
    extra_data: Text()  # JSON object, opaque to the service

    # Read state
    read: Boolean(default=False)
    read_at: DateTime()

    # Delivery tracking
    delivered: Boolean(default=False)
    delivered_at: DateTime()
    delivery_attempts: Integer(default=0, min_value=0)

    expires_at: DateTime()
    created_at: DateTime()

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        user_id,
        notification_type,
        title,
        message,
        priority=NotificationPriority.MEDIUM.value,
        link=None,
        extra_data=None,
        expires_at=None,
    ):
        now = utc_now()
        notification = cls(
            user_id=user_id,
            notification_type=notification_type,
            title=title,
            message=message,
            priority=priority,
            link=link,
            extra_data=json.dumps(extra_data or {}),
            read=False,
            delivered=False,
            delivery_attempts=0,
            expires_at=expires_at,
            created_at=now,
        )
        notification.raise_(
            NotificationCreated(
                notification_id=str(notification.id),
                user_id=str(user_id),
                notification_type=notification_type,
                priority=priority,
                created_at=now,
            )
        )
        return notification

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def data(self) -> dict:
        return json.loads(self.extra_data) if self.extra_data else {}

    def is_expired(self, as_of: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return as_utc(self.expires_at) <= (as_of or utc_now())

    def to_message(self) -> dict:
        """Shape pushed over the real-time transport and returned by the API."""
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "type": self.notification_type,
            "title": self.title,
            "message": self.message,
            "priority": self.priority,
            "link": self.link,
            "data": self.data,
            "read": bool(self.read),
            "delivered": bool(self.delivered),
            "delivery_attempts": self.delivery_attempts,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    # -------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------
    def mark_delivered(self):
        if self.delivered:
            return
        now = utc_now()
        self.delivered = True
        self.delivered_at = now
        self.raise_(
            NotificationDelivered(
                notification_id=str(self.id),
                user_id=str(self.user_id),
                attempts=self.delivery_attempts,
                delivered_at=now,
            )
        )

    def record_missed_delivery(self, reason: str, cap: int):
        """Count a missed attempt. The counter only grows, and stops at ``cap``."""
        self.delivery_attempts = min(self.delivery_attempts + 1, max(cap, self.delivery_attempts))
        self.raise_(
            NotificationDeliveryMissed(
                notification_id=str(self.id),
                user_id=str(self.user_id),
                attempts=self.delivery_attempts,
                reason=reason,
                missed_at=utc_now(),
            )
        )

    # -------------------------------------------------------------------
    # Read state
    # -------------------------------------------------------------------
    def mark_read(self) -> bool:
        """Mark as read. Returns False when it already was."""
        if self.read:
            return False
        now = utc_now()
        self.read = True
        self.read_at = now
        self.raise_(
            NotificationRead(
                notification_id=str(self.id),
                user_id=str(self.user_id),
                read_at=now,
            )
        )
        return True
