"""FastAPI routes for payments and provider callbacks.

Provider callbacks are authenticated by signature, not by user identity.
They answer 200 for repeated deliveries of the same callback so providers
stop retrying; ``applied`` tells whether this delivery changed anything.
"""

from fastapi import APIRouter, Depends, Request

from storefront.api.dependencies import Identity, call, current_identity, get_services, require_admin
from storefront.api.schemas import (
    CallbackResponse,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    PaymentListResponse,
    PaymentResponse,
    RefundRequest,
    RefundResponse,
    payment_response,
)
from storefront.services import Services

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("", status_code=201, response_model=InitiatePaymentResponse)
async def initiate_payment(
    body: InitiatePaymentRequest,
    request: Request,
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> InitiatePaymentResponse:
    """Start a payment attempt for one of the caller's orders."""
    result = await call(
        request,
        services.payments.initiate,
        body.order_id,
        body.method,
        body.method_details(),
        user_id=identity.user_id,
    )
    return InitiatePaymentResponse(
        payment=payment_response(result.payment),
        redirect_url=result.redirect_url,
        superseded_payment_id=result.superseded_payment_id,
    )


@router.get("/providers", response_model=list[str])
async def list_providers(services: Services = Depends(get_services)) -> list[str]:
    return services.payments.supported_providers()


@router.get("/order/{order_id}", response_model=PaymentListResponse)
async def list_order_payments(
    order_id: str,
    request: Request,
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> PaymentListResponse:
    owner = None if identity.is_admin else identity.user_id
    payments = await call(request, services.payments.list_payments, order_id, user_id=owner)
    return PaymentListResponse(items=[payment_response(payment) for payment in payments])


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment_status(
    payment_id: str,
    request: Request,
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> PaymentResponse:
    """Current payment status.

    An overdue open payment is expired on read; one that has gone quiet is
    checked with its provider first.
    """
    owner = None if identity.is_admin else identity.user_id
    payment = await call(request, services.payments.refresh_payment, payment_id, user_id=owner)
    return payment_response(payment)


@router.post("/{payment_id}/refund", response_model=RefundResponse)
async def refund_payment(
    payment_id: str,
    body: RefundRequest,
    request: Request,
    identity: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
) -> RefundResponse:
    """Refund a paid payment through its provider (administrators only)."""
    result = await call(request, services.payments.refund, payment_id, body.reason, identity.user_id)
    return RefundResponse(
        payment=payment_response(result.payment),
        order_status=result.order_status,
        provider_refund_id=result.provider_refund_id,
    )


@router.post("/callbacks/{provider}", response_model=CallbackResponse)
async def provider_callback(
    provider: str,
    request: Request,
    services: Services = Depends(get_services),
) -> CallbackResponse:
    """Receive a provider's payment outcome."""
    adapter = services.providers.get_adapter(provider)
    raw_body = await request.body()
    signature = request.headers.get(adapter.signature_header)

    result = await call(request, services.payments.handle_callback, adapter.name, raw_body, signature)
    return CallbackResponse(payment_id=str(result.payment.id), status=result.payment.status, applied=result.applied)
