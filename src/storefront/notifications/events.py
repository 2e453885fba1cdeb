"""Domain events for the Notification aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="Notification")
class NotificationCreated:
    """A notification was stored and is awaiting delivery."""

    __version__ = 1

    notification_id: Identifier(required=True)
    user_id: Identifier(required=True)
    notification_type: String(required=True)
    priority: String(required=True)
    created_at: DateTime(required=True)


@storefront.event(part_of="Notification")
class NotificationDelivered:
    __version__ = 1

    notification_id: Identifier(required=True)
    user_id: Identifier(required=True)
    attempts: Integer(required=True)
    delivered_at: DateTime(required=True)


@storefront.event(part_of="Notification")
class NotificationDeliveryMissed:
    """A delivery attempt found no live connection or got no acknowledgement."""

    __version__ = 1

    notification_id: Identifier(required=True)
    user_id: Identifier(required=True)
    attempts: Integer(required=True)
    reason: String(required=True)
    missed_at: DateTime(required=True)


@storefront.event(part_of="Notification")
class NotificationRead:
    __version__ = 1

    notification_id: Identifier(required=True)
    user_id: Identifier(required=True)
    read_at: DateTime(required=True)
