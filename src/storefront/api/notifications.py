"""FastAPI routes for a user's notifications and admin broadcasts."""

from fastapi import APIRouter, Depends, Query, Request

from storefront.api.dependencies import Identity, call, current_identity, get_services, require_admin
from storefront.api.schemas import (
    BroadcastRequest,
    BroadcastResponse,
    NotificationListResponse,
    NotificationResponse,
    StatusResponse,
    UnreadCountResponse,
    UpdatedCountResponse,
    notification_response,
)
from storefront.errors import ValidationError
from storefront.notifications.notification import NotificationPriority, NotificationType
from storefront.notifications.templates import render
from storefront.services import Services

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    request: Request,
    page: int = Query(default=1),
    limit: int = Query(default=20),
    type: str | None = Query(default=None),
    read: bool | None = Query(default=None),
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> NotificationListResponse:
    """Newest first, expired notifications excluded."""
    result = await call(
        request,
        services.notifications.get_notifications,
        identity.user_id,
        page=page,
        limit=limit,
        notification_type=type,
        read=read,
    )
    return NotificationListResponse(
        items=[notification_response(notification) for notification in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    request: Request,
    type: str | None = Query(default=None),
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> UnreadCountResponse:
    count = await call(request, services.notifications.unread_count, identity.user_id, notification_type=type)
    return UnreadCountResponse(unread=count)


@router.patch("/read-all", response_model=UpdatedCountResponse)
async def mark_all_read(
    request: Request,
    type: str | None = Query(default=None),
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> UpdatedCountResponse:
    updated = await call(request, services.notifications.mark_all_read, identity.user_id, notification_type=type)
    return UpdatedCountResponse(updated=updated)


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: str,
    request: Request,
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> NotificationResponse:
    notification = await call(request, services.notifications.mark_read, identity.user_id, notification_id)
    return notification_response(notification)


@router.delete("/{notification_id}", response_model=StatusResponse)
async def delete_notification(
    notification_id: str,
    request: Request,
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> StatusResponse:
    if identity.is_admin:
        await call(request, services.notifications.delete_any, notification_id)
    else:
        await call(request, services.notifications.delete, identity.user_id, notification_id)
    return StatusResponse(status="deleted")


@router.post("/broadcast", response_model=BroadcastResponse)
async def broadcast(
    body: BroadcastRequest,
    request: Request,
    identity: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
) -> BroadcastResponse:
    """Send one notification to the given users, or to every known user."""
    try:
        NotificationType(body.notification_type)
        NotificationPriority(body.priority)
    except ValueError:
        raise ValidationError(
            "Unknown notification type or priority",
            {"notification_type": body.notification_type, "priority": body.priority},
        )

    content = render("system_announcement", body.model_dump(exclude={"user_ids"}))
    result = await call(request, services.notifications.broadcast, content, body.user_ids)
    return BroadcastResponse(total=result.total, created=result.created, throttled=result.throttled, failed=result.failed)
