"""Rendered notification content, independent of any recipient."""

from dataclasses import dataclass, field
from datetime import datetime

from storefront.notifications.notification import NotificationPriority


@dataclass(frozen=True)
class NotificationContent:
    notification_type: str
    title: str
    message: str
    priority: str = NotificationPriority.MEDIUM.value
    link: str | None = None
    extra_data: dict = field(default_factory=dict)
    expires_at: datetime | None = None
