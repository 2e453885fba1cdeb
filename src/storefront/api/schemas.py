"""Pydantic request/response models for the storefront API.

API schemas are separate from protean commands and aggregates; the
``*_response`` builders translate aggregates into response models.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from storefront.inventory.product import Product
from storefront.notifications.notification import Notification, NotificationPriority, NotificationType
from storefront.ordering.order import Order
from storefront.payments.payment import Payment


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------
class OrderLineRequest(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class ShippingAddressRequest(BaseModel):
    street: str = Field(..., max_length=255)
    city: str = Field(..., max_length=100)
    state: str | None = Field(default=None, max_length=100)
    country: str = Field(..., max_length=100)
    zip_code: str | None = Field(default=None, max_length=20)


class CreateOrderRequest(BaseModel):
    items: list[OrderLineRequest] = Field(..., min_length=1)
    shipping_address: ShippingAddressRequest
    payment_method: str = Field(..., examples=["mpesa"])
    contact_email: str | None = None


class UpdateOrderStatusRequest(BaseModel):
    status: str = Field(..., examples=["shipped"])
    tracking_number: str | None = None
    reason: str | None = Field(default=None, max_length=500)


class CancelOrderRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class InitiatePaymentRequest(BaseModel):
    order_id: str
    method: str = Field(..., examples=["mpesa", "paystack", "paypal"])
    phone_number: str | None = Field(default=None, examples=["254712345678"])
    email: str | None = None

    def method_details(self) -> dict:
        return {key: value for key, value in (("phone_number", self.phone_number), ("email", self.email)) if value}


class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class BroadcastRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    notification_type: str = NotificationType.SYSTEM.value
    priority: str = NotificationPriority.MEDIUM.value
    link: str | None = Field(default=None, max_length=500)
    data: dict = Field(default_factory=dict)
    expires_at: datetime | None = None
    user_ids: list[str] | None = None


class AddProductRequest(BaseModel):
    sku: str = Field(..., max_length=64)
    name: str = Field(..., max_length=255)
    price: float = Field(..., ge=0)
    stock: int = Field(default=0, ge=0)
    low_stock_threshold: int = Field(default=10, ge=0)


class RestockRequest(BaseModel):
    quantity: int = Field(..., ge=1)


# ---------------------------------------------------------------------------
# Response Models
# ---------------------------------------------------------------------------
class SideEffectResponse(BaseModel):
    name: str
    ok: bool
    error: str | None = None


class OrderLineResponse(BaseModel):
    product_id: str
    name: str
    quantity: int
    unit_price: float
    line_total: float


class OrderResponse(BaseModel):
    order_id: str
    order_number: str
    user_id: str
    status: str
    payment_status: str
    payment_method: str
    lines: list[OrderLineResponse]
    shipping_address: dict | None = None
    subtotal: float
    tax_amount: float
    shipping_amount: float
    total: float
    tracking_number: str | None = None
    cancellation_reason: str | None = None
    payment_retry_count: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    paid_at: datetime | None = None


class OrderDetailResponse(BaseModel):
    order: OrderResponse
    low_stock_product_ids: list[str] = []
    side_effects: list[SideEffectResponse] = []


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int


class PaymentResponse(BaseModel):
    payment_id: str
    order_id: str
    status: str
    provider: str
    amount: float
    currency: str
    transaction_id: str
    error_code: str | None = None
    error_message: str | None = None
    expires_at: datetime | None = None
    paid_at: datetime | None = None
    refunded_at: datetime | None = None


class InitiatePaymentResponse(BaseModel):
    payment: PaymentResponse
    redirect_url: str | None = None
    superseded_payment_id: str | None = None


class PaymentListResponse(BaseModel):
    items: list[PaymentResponse]


class CallbackResponse(BaseModel):
    payment_id: str
    status: str
    applied: bool


class RefundResponse(BaseModel):
    payment: PaymentResponse
    order_status: str
    provider_refund_id: str | None = None


class NotificationResponse(BaseModel):
    id: str
    type: str
    title: str
    message: str
    priority: str
    link: str | None = None
    data: dict = {}
    read: bool
    delivered: bool
    created_at: datetime | None = None
    expires_at: datetime | None = None


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse]
    total: int
    page: int
    limit: int
    pages: int


class UnreadCountResponse(BaseModel):
    unread: int


class UpdatedCountResponse(BaseModel):
    updated: int


class BroadcastResponse(BaseModel):
    total: int
    created: int
    throttled: int
    failed: int


class ProductResponse(BaseModel):
    product_id: str
    sku: str
    name: str
    price: float
    stock: int
    low_stock_threshold: int
    status: str
    is_low_stock: bool


class StockChangeResponse(BaseModel):
    product_id: str
    previous_stock: int
    new_stock: int
    is_low: bool


class StatusResponse(BaseModel):
    status: str = "ok"


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------
def side_effects_response(side_effects) -> list[SideEffectResponse]:
    return [SideEffectResponse(name=effect.name, ok=effect.ok, error=effect.error) for effect in side_effects]


def order_response(order: Order) -> OrderResponse:
    address = order.shipping_address
    return OrderResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        user_id=str(order.user_id),
        status=order.status,
        payment_status=order.payment_status,
        payment_method=order.payment_method,
        lines=[
            OrderLineResponse(
                product_id=str(line.product_id),
                name=line.name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                line_total=line.line_total,
            )
            for line in order.lines
        ],
        shipping_address=address.to_dict() if address else None,
        subtotal=order.subtotal,
        tax_amount=order.tax_amount,
        shipping_amount=order.shipping_amount,
        total=order.total,
        tracking_number=order.tracking_number,
        cancellation_reason=order.cancellation_reason,
        payment_retry_count=order.payment_retry_count or 0,
        created_at=order.created_at,
        updated_at=order.updated_at,
        paid_at=order.paid_at,
    )


def payment_response(payment: Payment) -> PaymentResponse:
    return PaymentResponse(
        payment_id=str(payment.id),
        order_id=str(payment.order_id),
        status=payment.status,
        provider=payment.provider,
        amount=payment.amount,
        currency=payment.currency,
        transaction_id=payment.transaction_id,
        error_code=payment.error_code,
        error_message=payment.error_message,
        expires_at=payment.expires_at,
        paid_at=payment.paid_at,
        refunded_at=payment.refunded_at,
    )


def notification_response(notification: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=str(notification.id),
        type=notification.notification_type,
        title=notification.title,
        message=notification.message,
        priority=notification.priority,
        link=notification.link,
        data=notification.data,
        read=bool(notification.read),
        delivered=bool(notification.delivered),
        created_at=notification.created_at,
        expires_at=notification.expires_at,
    )


def product_response(product: Product) -> ProductResponse:
    return ProductResponse(
        product_id=str(product.id),
        sku=product.sku,
        name=product.name,
        price=product.price,
        stock=product.stock,
        low_stock_threshold=product.low_stock_threshold,
        status=product.status,
        is_low_stock=product.is_low_stock,
    )
