"""FastAPI routes for product stock administration."""

from fastapi import APIRouter, Depends, Request

from storefront.api.dependencies import Identity, call, get_services, require_admin
from storefront.api.schemas import (
    AddProductRequest,
    ProductResponse,
    RestockRequest,
    StockChangeResponse,
    product_response,
)
from storefront.services import Services

router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.post("/products", status_code=201, response_model=ProductResponse)
async def add_product(
    body: AddProductRequest,
    request: Request,
    identity: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
) -> ProductResponse:
    ledger = services.inventory

    def add():
        product_id = ledger.add_product(**body.model_dump())
        return ledger.get_product(product_id)

    return product_response(await call(request, add))


@router.post("/products/{product_id}/restock", response_model=StockChangeResponse)
async def restock_product(
    product_id: str,
    body: RestockRequest,
    request: Request,
    identity: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
) -> StockChangeResponse:
    change = await call(request, services.inventory.restock, product_id, body.quantity)
    return StockChangeResponse(
        product_id=change.product_id,
        previous_stock=change.previous_stock,
        new_stock=change.new_stock,
        is_low=change.is_low,
    )


@router.get("/products/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: str,
    request: Request,
    identity: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
) -> ProductResponse:
    return product_response(await call(request, services.inventory.get_product, product_id))
