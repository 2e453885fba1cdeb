"""The inventory ledger is the only path by which stock counters change.

Two layers:

* Module functions (``reserve_many``, ``release_many``, ...) run inside the
  caller's unit of work. Order placement and status changes call them from
  their own command handlers so stock writes commit with the order write.
* ``InventoryLedger`` is the standalone entry point. Each call takes the
  product's lock and runs a command, so concurrent callers cannot oversell.
"""

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from storefront.errors import InsufficientStock, ProductNotFound, ValidationError
from storefront.inventory.product import Product, StockChange
from storefront.utils.locks import KeyedLocks, product_key

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# In-transaction primitives
# ---------------------------------------------------------------------------
def load_product(product_id) -> Product:
    try:
        return current_domain.repository_for(Product).get(str(product_id))
    except ObjectNotFoundError:
        raise ProductNotFound(product_id)


def ensure_available(requirements: dict[str, int]) -> dict[str, Product]:
    """Check every requirement before anything is written.

    ``requirements`` maps product id to the total quantity needed. Returns the
    loaded products keyed by id.
    """
    products = {}
    for product_id, quantity in requirements.items():
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", {"product_id": product_id})
        product = load_product(product_id)
        reason = product.shortfall_reason(quantity)
        if reason:
            raise InsufficientStock(product_id, quantity, product.stock, reason)
        products[product_id] = product
    return products


def reserve_many(requirements: dict[str, int], order_id=None) -> list[StockChange]:
    """Decrement stock for every product, or for none of them."""
    products = ensure_available(requirements)
    repo = current_domain.repository_for(Product)

    changes = []
    for product_id, quantity in requirements.items():
        product = products[product_id]
        changes.append(product.reserve(quantity, order_id=order_id))
        repo.add(product)
    return changes


def release_many(requirements: dict[str, int], order_id=None) -> list[StockChange]:
    """Return stock for every product that still exists.

    A product that has since disappeared is skipped and logged; stock
    reconciliation for it happens outside this system.
    """
    repo = current_domain.repository_for(Product)

    changes = []
    for product_id, quantity in requirements.items():
        try:
            product = repo.get(str(product_id))
        except ObjectNotFoundError:
            logger.warning(
                "Stock release skipped for missing product",
                product_id=str(product_id),
                quantity=quantity,
                order_id=str(order_id) if order_id else None,
            )
            continue
        changes.append(product.release(quantity, order_id=order_id))
        repo.add(product)
    return changes


# ---------------------------------------------------------------------------
# Standalone entry point
# ---------------------------------------------------------------------------
class InventoryLedger:
    def __init__(self, locks: KeyedLocks | None = None):
        self.locks = locks or KeyedLocks()

    def reserve(self, product_id, quantity, order_id=None) -> StockChange:
        from storefront.inventory.stocking import ReserveStock

        with self.locks.hold(product_key(product_id)):
            return current_domain.process(
                ReserveStock(product_id=str(product_id), quantity=quantity, order_id=order_id),
                asynchronous=False,
            )

    def release(self, product_id, quantity, order_id=None) -> StockChange | None:
        from storefront.inventory.stocking import ReleaseStock

        with self.locks.hold(product_key(product_id)):
            return current_domain.process(
                ReleaseStock(product_id=str(product_id), quantity=quantity, order_id=order_id),
                asynchronous=False,
            )

    def is_low_stock(self, product_id) -> bool:
        return load_product(product_id).is_low_stock

    def get_product(self, product_id) -> Product:
        return load_product(product_id)

    def add_product(self, sku, name, price, stock=0, low_stock_threshold=10) -> str:
        from storefront.inventory.stocking import AddProduct

        return current_domain.process(
            AddProduct(
                sku=sku,
                name=name,
                price=price,
                stock=stock,
                low_stock_threshold=low_stock_threshold,
            ),
            asynchronous=False,
        )

    def restock(self, product_id, quantity) -> StockChange:
        from storefront.inventory.stocking import RestockProduct

        with self.locks.hold(product_key(product_id)):
            return current_domain.process(
                RestockProduct(product_id=str(product_id), quantity=quantity),
                asynchronous=False,
            )

    def set_active(self, product_id, active: bool) -> None:
        from storefront.inventory.stocking import SetProductAvailability

        with self.locks.hold(product_key(product_id)):
            current_domain.process(
                SetProductAvailability(product_id=str(product_id), active=active),
                asynchronous=False,
            )
