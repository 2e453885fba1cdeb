"""Order placement — command and handler.

The order write and every stock reservation happen in the handler's unit of
work. Availability of every line is checked before anything is written, so a
shortfall on any line leaves both orders and stock untouched.
"""

import json

from protean import handle
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.errors import ValidationError
from storefront.inventory.ledger import ensure_available, reserve_many
from storefront.ordering.order import Order
from storefront.payments.gateway.port import ProviderName


@storefront.command(part_of="Order")
class PlaceOrder:
    user_id = Identifier(required=True)
    lines = Text(required=True)  # JSON: [{product_id, quantity}]
    shipping_address = Text(required=True)  # JSON: address dict
    payment_method = String(choices=ProviderName, required=True)
    contact_email = String(max_length=255)
    tax_rate = Float(default=0.0, min_value=0.0)
    shipping_amount = Float(default=0.0, min_value=0.0)


def parse_lines(raw) -> list[dict]:
    lines = json.loads(raw) if isinstance(raw, str) else raw
    if not isinstance(lines, list) or not lines:
        raise ValidationError("An order needs at least one line")

    parsed = []
    for index, line in enumerate(lines):
        product_id = line.get("product_id")
        quantity = line.get("quantity")
        if not product_id:
            raise ValidationError("Each line needs a product_id", {"line": index})
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError("Line quantity must be a whole number of at least 1", {"line": index})
        parsed.append({"product_id": str(product_id), "quantity": quantity})
    return parsed


@storefront.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        lines = parse_lines(command.lines)
        shipping_address = (
            json.loads(command.shipping_address)
            if isinstance(command.shipping_address, str)
            else command.shipping_address
        )

        requirements: dict[str, int] = {}
        for line in lines:
            requirements[line["product_id"]] = requirements.get(line["product_id"], 0) + line["quantity"]

        products = ensure_available(requirements)

        priced_lines = [
            {
                "product_id": line["product_id"],
                "name": products[line["product_id"]].name,
                "quantity": line["quantity"],
                "unit_price": products[line["product_id"]].price,
            }
            for line in lines
        ]

        order = Order.place(
            user_id=command.user_id,
            lines=priced_lines,
            shipping_address=shipping_address,
            payment_method=command.payment_method,
            tax_rate=command.tax_rate or 0.0,
            shipping_amount=command.shipping_amount or 0.0,
            contact_email=command.contact_email,
        )
        stock_changes = reserve_many(requirements, order_id=str(order.id))
        current_domain.repository_for(Order).add(order)

        return {"order_id": str(order.id), "stock_changes": stock_changes}
