"""Stock commands and handler."""

from protean import handle
from protean.fields import Boolean, Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.inventory.ledger import load_product, release_many, reserve_many
from storefront.inventory.product import Product


@storefront.command(part_of="Product")
class AddProduct:
    sku = String(required=True, max_length=64)
    name = String(required=True, max_length=255)
    price = Float(required=True, min_value=0.0)
    stock = Integer(default=0, min_value=0)
    low_stock_threshold = Integer(default=10, min_value=0)


@storefront.command(part_of="Product")
class ReserveStock:
    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    order_id = Identifier()


@storefront.command(part_of="Product")
class ReleaseStock:
    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    order_id = Identifier()


@storefront.command(part_of="Product")
class RestockProduct:
    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)


@storefront.command(part_of="Product")
class SetProductAvailability:
    product_id = Identifier(required=True)
    active = Boolean(required=True)


@storefront.command_handler(part_of=Product)
class StockHandler:
    @handle(AddProduct)
    def add_product(self, command):
        product = Product.add(
            sku=command.sku,
            name=command.name,
            price=command.price,
            stock=command.stock or 0,
            low_stock_threshold=(command.low_stock_threshold if command.low_stock_threshold is not None else 10),
        )
        current_domain.repository_for(Product).add(product)
        return str(product.id)

    @handle(ReserveStock)
    def reserve_stock(self, command):
        changes = reserve_many({str(command.product_id): command.quantity}, order_id=command.order_id)
        return changes[0]

    @handle(ReleaseStock)
    def release_stock(self, command):
        changes = release_many({str(command.product_id): command.quantity}, order_id=command.order_id)
        return changes[0] if changes else None

    @handle(RestockProduct)
    def restock_product(self, command):
        product = load_product(command.product_id)
        change = product.replenish(command.quantity)
        current_domain.repository_for(Product).add(product)
        return change

    @handle(SetProductAvailability)
    def set_availability(self, command):
        product = load_product(command.product_id)
        if command.active:
            product.activate()
        else:
            product.deactivate()
        current_domain.repository_for(Product).add(product)
