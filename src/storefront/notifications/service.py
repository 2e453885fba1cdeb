"""Notification delivery service.

Every notification is written to storage before any delivery attempt.
Delivery runs on a worker pool after the record is stored and pushes to all
of the owner's live connections at once, waiting a bounded time for an
acknowledgement; a missing connection or a missing acknowledgement is not
an error, only a counted attempt that the retry sweep may pick up later.
"""

import math
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from storefront.config import Settings
from storefront.domain import storefront
from storefront.errors import NotificationNotFound, RateLimitExceeded, ValidationError
from storefront.notifications.content import NotificationContent
from storefront.notifications.directory import OrderCustomerDirectory, UserDirectory
from storefront.notifications.notification import Notification
from storefront.notifications.rate_limit import SlidingWindowRateLimiter
from storefront.notifications.registry import ConnectionRegistry
from storefront.notifications.templates import render
from storefront.utils.clock import as_utc, utc_now
from storefront.utils.locks import KeyedLocks

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class DeliveryResult:
    notification: Notification
    delivered: bool
    reason: str | None = None


@dataclass(frozen=True)
class BroadcastResult:
    total: int
    created: int
    throttled: int
    failed: int


@dataclass(frozen=True)
class RetryReport:
    total: int
    success: int


@dataclass(frozen=True)
class NotificationPage:
    items: list[Notification]
    total: int
    page: int
    limit: int
    pages: int


class NotificationService:
    def __init__(
        self,
        settings: Settings | None = None,
        registry: ConnectionRegistry | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        directory: UserDirectory | None = None,
    ):
        self.settings = settings or Settings()
        self.registry = registry or ConnectionRegistry()
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            window_seconds=self.settings.rate_limit_window_seconds,
            max_requests=self.settings.rate_limit_max,
        )
        self.directory = directory or OrderCustomerDirectory(self.settings.admin_user_ids)
        self._locks = KeyedLocks()
        self._delivery_pool = ThreadPoolExecutor(
            max_workers=self.settings.delivery_workers, thread_name_prefix="notification-delivery"
        )
        self._push_pool = ThreadPoolExecutor(
            max_workers=self.settings.delivery_workers * 4, thread_name_prefix="notification-push"
        )
        self._pending: set[Future] = set()
        self._pending_guard = threading.Lock()

    # -------------------------------------------------------------------
    # Storage helpers
    # -------------------------------------------------------------------
    @staticmethod
    def _repo():
        return current_domain.repository_for(Notification)

    def get(self, notification_id) -> Notification:
        try:
            return self._repo().get(str(notification_id))
        except ObjectNotFoundError:
            raise NotificationNotFound(notification_id)

    def _get_owned(self, user_id, notification_id) -> Notification:
        notification = self.get(notification_id)
        if str(notification.user_id) != str(user_id):
            # Someone else's notification looks exactly like a missing one
            raise NotificationNotFound(notification_id)
        return notification

    def _for_user(self, user_id) -> list[Notification]:
        return self._repo()._dao.query.filter(user_id=str(user_id)).all().items

    # -------------------------------------------------------------------
    # Creation and delivery
    # -------------------------------------------------------------------
    def create(self, user_id, content: NotificationContent) -> Notification:
        """Persist a notification for ``user_id`` and hand it off for delivery.

        Raises ``RateLimitExceeded`` before anything is stored when the user
        has reached the window limit. Delivery runs on the delivery pool
        unless ``deliver_in_background`` is off, so callers never wait on a
        slow connection; its outcome does not affect the return value.
        """
        self.rate_limiter.hit(self.rate_limiter.key_for(user_id))

        notification = Notification.create(
            user_id=str(user_id),
            notification_type=content.notification_type,
            title=content.title,
            message=content.message,
            priority=content.priority,
            link=content.link,
            extra_data=content.extra_data,
            expires_at=content.expires_at,
        )
        self._repo().add(notification)
        logger.info(
            "Notification created",
            notification_id=str(notification.id),
            user_id=str(user_id),
            notification_type=content.notification_type,
        )

        if not self.settings.deliver_in_background:
            return self.deliver(notification).notification

        future = self._delivery_pool.submit(self._deliver_later, notification.id)
        with self._pending_guard:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return notification

    def _deliver_later(self, notification_id) -> DeliveryResult | None:
        with storefront.domain_context():
            try:
                return self.deliver(self.get(notification_id))
            except NotificationNotFound:
                # Deleted before its turn came
                return None
            except Exception as exc:
                logger.exception("Background delivery failed", notification_id=str(notification_id), error=str(exc))
                return None

    def _forget(self, future: Future) -> None:
        with self._pending_guard:
            self._pending.discard(future)

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for queued deliveries. Returns False if some were still running at ``timeout``."""
        with self._pending_guard:
            pending = set(self._pending)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self) -> None:
        self._delivery_pool.shutdown(wait=True)
        self._push_pool.shutdown(wait=True)

    def notify(self, user_id, template_name: str, context: dict) -> Notification:
        return self.create(user_id, render(template_name, context))

    def notify_admins(self, template_name: str, context: dict) -> list[Notification]:
        content = render(template_name, context)
        created = []
        for admin_id in self.directory.admin_user_ids():
            try:
                created.append(self.create(admin_id, content))
            except RateLimitExceeded:
                logger.warning("Admin notification throttled", user_id=admin_id, template=template_name)
        return created

    def deliver(self, notification: Notification) -> DeliveryResult:
        """Push ``notification`` to its owner's live connections.

        All connections are pushed at once, so one delivery waits at most one
        acknowledgement timeout. Acknowledged by any connection marks it
        delivered; otherwise the attempt counter grows by one, up to the
        configured cap.
        """
        user_id = str(notification.user_id)
        connections = self.registry.connections_for(user_id)

        acknowledged = False
        reason = None
        if not connections:
            reason = "not_connected"
        else:
            message = {"type": "notification", "id": str(notification.id), "notification": notification.to_message()}
            if len(connections) == 1:
                acknowledged = self._push(connections[0], message)
            else:
                pushes = [self._push_pool.submit(self._push, connection, message) for connection in connections]
                acknowledged = any(push.result() for push in pushes)
            if not acknowledged:
                reason = "not_acknowledged"

        with self._locks.hold(f"notification:{notification.id}"):
            current = self.get(notification.id)
            if acknowledged:
                current.mark_delivered()
            else:
                current.record_missed_delivery(reason, self.settings.delivery_attempt_cap)
            self._repo().add(current)

        logger.info(
            "Notification delivery attempted",
            notification_id=str(notification.id),
            user_id=user_id,
            delivered=acknowledged,
            reason=reason,
            attempts=current.delivery_attempts,
        )
        return DeliveryResult(notification=current, delivered=acknowledged, reason=reason)

    def _push(self, connection, message: dict) -> bool:
        try:
            return bool(connection.push(message, self.settings.ack_timeout_seconds))
        except Exception as exc:
            logger.warning(
                "Push to connection failed",
                notification_id=message["id"],
                connection_id=getattr(connection, "connection_id", None),
                error=str(exc),
            )
            return False

    def broadcast(self, content: NotificationContent, user_ids=None) -> BroadcastResult:
        """Create ``content`` for every user in ``user_ids`` (or every known user).

        Linear in the number of recipients; run it from a background task or
        an admin action, never from a latency-sensitive request path.
        """
        recipients = list(dict.fromkeys(str(u) for u in (user_ids or self.directory.all_user_ids())))

        created = throttled = failed = 0
        for user_id in recipients:
            try:
                self.create(user_id, content)
                created += 1
            except RateLimitExceeded:
                throttled += 1
                logger.warning("Broadcast recipient throttled", user_id=user_id)
            except Exception as exc:
                failed += 1
                logger.error("Broadcast to recipient failed", user_id=user_id, error=str(exc))

        logger.info(
            "Broadcast complete",
            total=len(recipients),
            created=created,
            throttled=throttled,
            failed=failed,
        )
        return BroadcastResult(total=len(recipients), created=created, throttled=throttled, failed=failed)

    def retry_undelivered(self, as_of: datetime | None = None) -> RetryReport:
        """Re-attempt recent undelivered notifications that are below the attempt cap."""
        as_of = as_utc(as_of) or utc_now()
        cutoff = as_of - timedelta(hours=self.settings.retry_recency_hours)
        cap = self.settings.delivery_attempt_cap

        undelivered = self._repo()._dao.query.filter(delivered=False).all().items
        eligible = [
            notification
            for notification in undelivered
            if notification.delivery_attempts < cap
            and as_utc(notification.created_at) >= cutoff
            and not notification.is_expired(as_of)
        ]

        success = 0
        for notification in eligible:
            if self.deliver(notification).delivered:
                success += 1

        logger.info("Undelivered notification retry complete", total=len(eligible), success=success)
        return RetryReport(total=len(eligible), success=success)

    # -------------------------------------------------------------------
    # User operations
    # -------------------------------------------------------------------
    def get_notifications(self, user_id, page=1, limit=20, notification_type=None, read=None) -> NotificationPage:
        if page < 1:
            raise ValidationError("Page must be at least 1", {"page": page})
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_SIZE}", {"limit": limit})

        now = utc_now()
        items = [n for n in self._for_user(user_id) if not n.is_expired(now)]
        if notification_type is not None:
            items = [n for n in items if n.notification_type == notification_type]
        if read is not None:
            items = [n for n in items if bool(n.read) == read]
        items.sort(key=lambda n: as_utc(n.created_at), reverse=True)

        total = len(items)
        start = (page - 1) * limit
        return NotificationPage(
            items=items[start : start + limit],
            total=total,
            page=page,
            limit=limit,
            pages=math.ceil(total / limit) if total else 0,
        )

    def mark_read(self, user_id, notification_id) -> Notification:
        with self._locks.hold(f"notification:{notification_id}"):
            notification = self._get_owned(user_id, notification_id)
            if notification.mark_read():
                self._repo().add(notification)
        return notification

    def mark_all_read(self, user_id, notification_type=None) -> int:
        updated = 0
        for notification in self._for_user(user_id):
            if notification.read:
                continue
            if notification_type is not None and notification.notification_type != notification_type:
                continue
            with self._locks.hold(f"notification:{notification.id}"):
                fresh = self.get(notification.id)
                if fresh.mark_read():
                    self._repo().add(fresh)
                    updated += 1
        return updated

    def unread_count(self, user_id, notification_type=None) -> int:
        now = utc_now()
        return sum(
            1
            for n in self._for_user(user_id)
            if not n.read
            and not n.is_expired(now)
            and (notification_type is None or n.notification_type == notification_type)
        )

    def delete(self, user_id, notification_id) -> None:
        with self._locks.hold(f"notification:{notification_id}"):
            notification = self._get_owned(user_id, notification_id)
            self._repo()._dao.delete(notification)

    def delete_any(self, notification_id) -> None:
        """Administrative delete, regardless of owner."""
        with self._locks.hold(f"notification:{notification_id}"):
            notification = self.get(notification_id)
            self._repo()._dao.delete(notification)

    def purge_expired(self, as_of: datetime | None = None) -> int:
        """Delete expired notifications and those older than the retention period."""
        as_of = as_utc(as_of) or utc_now()
        retention_cutoff = as_of - timedelta(days=self.settings.notification_retention_days)

        purged = 0
        for notification in self._repo()._dao.query.all().items:
            if notification.is_expired(as_of) or as_utc(notification.created_at) < retention_cutoff:
                self._repo()._dao.delete(notification)
                purged += 1

        logger.info("Notification purge complete", purged=purged)
        return purged
