"""Domain events for the Product aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="Product")
class ProductAdded:
    """A stock-bearing product was registered."""

    __version__ = 1

    product_id: Identifier(required=True)
    sku: String(required=True)
    name: String(required=True)
    stock: Integer(required=True)
    added_at: DateTime(required=True)


@storefront.event(part_of="Product")
class StockReserved:
    """Stock was decremented for an order."""

    __version__ = 1

    product_id: Identifier(required=True)
    order_id: Identifier()
    quantity: Integer(required=True)
    previous_stock: Integer(required=True)
    new_stock: Integer(required=True)
    reserved_at: DateTime(required=True)


@storefront.event(part_of="Product")
class StockReleased:
    """Stock was returned, from a cancellation or a refund."""

    __version__ = 1

    product_id: Identifier(required=True)
    order_id: Identifier()
    quantity: Integer(required=True)
    previous_stock: Integer(required=True)
    new_stock: Integer(required=True)
    released_at: DateTime(required=True)


@storefront.event(part_of="Product")
class StockReplenished:
    """Stock was received from a supplier."""

    __version__ = 1

    product_id: Identifier(required=True)
    quantity: Integer(required=True)
    new_stock: Integer(required=True)
    replenished_at: DateTime(required=True)


@storefront.event(part_of="Product")
class LowStockDetected:
    """Stock fell to or below the product's threshold."""

    __version__ = 1

    product_id: Identifier(required=True)
    sku: String(required=True)
    current_stock: Integer(required=True)
    threshold: Integer(required=True)
    detected_at: DateTime(required=True)


@storefront.event(part_of="Product")
class ProductAvailabilityChanged:
    """A product moved between active, inactive and out_of_stock."""

    __version__ = 1

    product_id: Identifier(required=True)
    previous_status: String(required=True)
    new_status: String(required=True)
    changed_at: DateTime(required=True)
