"""Product aggregate (CQRS) — the stock-bearing side of a catalogue item.

Only stock-relevant attributes live here: price snapshot source, stock
counter, low-stock threshold and availability status. Stock is mutated
exclusively through ``reserve``/``release``/``replenish``, which the
inventory ledger drives.

Availability:
    ACTIVE <-> OUT_OF_STOCK   (automatic, on stock reaching / leaving zero)
    ACTIVE/OUT_OF_STOCK <-> INACTIVE   (administrative)
"""

from dataclasses import dataclass
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError as FieldValidationError
from protean.fields import DateTime, Float, Integer, String

from storefront.domain import storefront
from storefront.errors import InsufficientStock, ValidationError
from storefront.inventory.events import (
    LowStockDetected,
    ProductAdded,
    ProductAvailabilityChanged,
    StockReleased,
    StockReplenished,
    StockReserved,
)
from storefront.utils.clock import utc_now


class ProductStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    OUT_OF_STOCK = "out_of_stock"


@dataclass(frozen=True)
class StockChange:
    """Outcome of a single stock mutation."""

    product_id: str
    name: str
    previous_stock: int
    new_stock: int
    threshold: int

    @property
    def is_low(self) -> bool:
        return self.new_stock <= self.threshold

    @property
    def crossed_threshold(self) -> bool:
        return self.previous_stock > self.threshold >= self.new_stock


@storefront.aggregate
class Product:
    sku = String(required=True, max_length=64)
    name = String(required=True, max_length=255)
    price = Float(required=True, min_value=0.0)
    stock = Integer(default=0, min_value=0)
    low_stock_threshold = Integer(default=10, min_value=0)
    status = String(choices=ProductStatus, default=ProductStatus.ACTIVE.value)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def stock_must_not_be_negative(self):
        if self.stock is not None and self.stock < 0:
            raise FieldValidationError({"stock": ["Stock cannot be negative"]})

    @invariant.post
    def active_product_without_stock_is_out_of_stock(self):
        if self.status == ProductStatus.ACTIVE.value and self.stock == 0:
            raise FieldValidationError({"status": ["A product with no stock must be out_of_stock"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def add(cls, sku, name, price, stock=0, low_stock_threshold=10):
        now = utc_now()
        product = cls(
            sku=sku,
            name=name,
            price=price,
            stock=stock,
            low_stock_threshold=low_stock_threshold,
            status=(ProductStatus.ACTIVE.value if stock > 0 else ProductStatus.OUT_OF_STOCK.value),
            created_at=now,
            updated_at=now,
        )
        product.raise_(
            ProductAdded(
                product_id=str(product.id),
                sku=sku,
                name=name,
                stock=stock,
                added_at=now,
            )
        )
        return product

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.low_stock_threshold

    def shortfall_reason(self, quantity: int) -> str | None:
        """Why ``quantity`` cannot be reserved right now, or None if it can."""
        if self.status == ProductStatus.INACTIVE.value:
            return "product is inactive"
        if quantity > self.stock:
            return "not enough stock"
        return None

    # -------------------------------------------------------------------
    # Stock mutations
    # -------------------------------------------------------------------
    def _set_stock(self, new_stock):
        previous_status = self.status
        with atomic_change(self):
            self.stock = new_stock
            if self.status != ProductStatus.INACTIVE.value:
                self.status = (
                    ProductStatus.OUT_OF_STOCK.value if new_stock == 0 else ProductStatus.ACTIVE.value
                )
            self.updated_at = utc_now()

        if self.status != previous_status:
            self.raise_(
                ProductAvailabilityChanged(
                    product_id=str(self.id),
                    previous_status=previous_status,
                    new_status=self.status,
                    changed_at=self.updated_at,
                )
            )

    def reserve(self, quantity, order_id=None) -> StockChange:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", {"quantity": quantity})
        reason = self.shortfall_reason(quantity)
        if reason:
            raise InsufficientStock(self.id, quantity, self.stock, reason)

        previous = self.stock
        self._set_stock(previous - quantity)
        change = StockChange(
            product_id=str(self.id),
            name=self.name,
            previous_stock=previous,
            new_stock=self.stock,
            threshold=self.low_stock_threshold,
        )

        self.raise_(
            StockReserved(
                product_id=str(self.id),
                order_id=order_id,
                quantity=quantity,
                previous_stock=previous,
                new_stock=self.stock,
                reserved_at=self.updated_at,
            )
        )
        if change.crossed_threshold:
            self.raise_(
                LowStockDetected(
                    product_id=str(self.id),
                    sku=self.sku,
                    current_stock=self.stock,
                    threshold=self.low_stock_threshold,
                    detected_at=self.updated_at,
                )
            )
        return change

    def release(self, quantity, order_id=None) -> StockChange:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", {"quantity": quantity})

        previous = self.stock
        self._set_stock(previous + quantity)
        self.raise_(
            StockReleased(
                product_id=str(self.id),
                order_id=order_id,
                quantity=quantity,
                previous_stock=previous,
                new_stock=self.stock,
                released_at=self.updated_at,
            )
        )
        return StockChange(
            product_id=str(self.id),
            name=self.name,
            previous_stock=previous,
            new_stock=self.stock,
            threshold=self.low_stock_threshold,
        )

    def replenish(self, quantity) -> StockChange:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", {"quantity": quantity})

        previous = self.stock
        self._set_stock(previous + quantity)
        self.raise_(
            StockReplenished(
                product_id=str(self.id),
                quantity=quantity,
                new_stock=self.stock,
                replenished_at=self.updated_at,
            )
        )
        return StockChange(
            product_id=str(self.id),
            name=self.name,
            previous_stock=previous,
            new_stock=self.stock,
            threshold=self.low_stock_threshold,
        )

    # -------------------------------------------------------------------
    # Availability
    # -------------------------------------------------------------------
    def deactivate(self):
        if self.status == ProductStatus.INACTIVE.value:
            return
        previous_status = self.status
        self.status = ProductStatus.INACTIVE.value
        self.updated_at = utc_now()
        self.raise_(
            ProductAvailabilityChanged(
                product_id=str(self.id),
                previous_status=previous_status,
                new_status=self.status,
                changed_at=self.updated_at,
            )
        )

    def activate(self):
        if self.status != ProductStatus.INACTIVE.value:
            return
        self.status = ProductStatus.ACTIVE.value if self.stock > 0 else ProductStatus.OUT_OF_STOCK.value
        self.updated_at = utc_now()
        self.raise_(
            ProductAvailabilityChanged(
                product_id=str(self.id),
                previous_status=ProductStatus.INACTIVE.value,
                new_status=self.status,
                changed_at=self.updated_at,
            )
        )
