"""FastAPI routes for orders.

Thin adapters over ``OrderLifecycleManager``: schema in, manager call,
response model out.
"""

from fastapi import APIRouter, Depends, Request

from storefront.api.dependencies import Identity, call, current_identity, get_services, require_admin
from storefront.api.schemas import (
    CancelOrderRequest,
    CreateOrderRequest,
    OrderDetailResponse,
    OrderListResponse,
    OrderResponse,
    UpdateOrderStatusRequest,
    order_response,
    side_effects_response,
)
from storefront.ordering.lifecycle import OrderResult
from storefront.services import Services

router = APIRouter(prefix="/orders", tags=["orders"])


def _detail(result: OrderResult) -> OrderDetailResponse:
    return OrderDetailResponse(
        order=order_response(result.order),
        low_stock_product_ids=result.low_stock_product_ids,
        side_effects=side_effects_response(result.side_effects),
    )


@router.post("", status_code=201, response_model=OrderDetailResponse)
async def create_order(
    body: CreateOrderRequest,
    request: Request,
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> OrderDetailResponse:
    """Place an order and reserve its stock."""
    result = await call(
        request,
        services.orders.create_order,
        identity.user_id,
        [line.model_dump() for line in body.items],
        body.shipping_address.model_dump(exclude_none=True),
        body.payment_method,
        contact_email=body.contact_email,
    )
    return _detail(result)


@router.get("", response_model=OrderListResponse)
async def list_my_orders(
    request: Request,
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> OrderListResponse:
    orders = await call(request, services.orders.list_orders, identity.user_id)
    return OrderListResponse(items=[order_response(order) for order in orders], total=len(orders))


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    request: Request,
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> OrderResponse:
    owner = None if identity.is_admin else identity.user_id
    order = await call(request, services.orders.get_order, order_id, user_id=owner)
    return order_response(order)


@router.patch("/{order_id}/status", response_model=OrderDetailResponse)
async def update_order_status(
    order_id: str,
    body: UpdateOrderStatusRequest,
    request: Request,
    identity: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
) -> OrderDetailResponse:
    """Move an order to a new status (administrators only)."""
    result = await call(
        request,
        services.orders.update_status,
        order_id,
        body.status,
        identity.user_id,
        tracking_number=body.tracking_number,
        reason=body.reason,
    )
    return _detail(result)


@router.post("/{order_id}/cancel", response_model=OrderDetailResponse)
async def cancel_order(
    order_id: str,
    request: Request,
    body: CancelOrderRequest | None = None,
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> OrderDetailResponse:
    """Cancel an order. Customers may only cancel their own."""
    owner = None if identity.is_admin else identity.user_id
    result = await call(
        request,
        services.orders.cancel_order,
        order_id,
        identity.user_id,
        reason=body.reason if body else None,
        user_id=owner,
    )
    return _detail(result)
