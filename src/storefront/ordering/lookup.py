"""Order lookups shared by the order and payment managers."""

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from storefront.errors import OrderNotFound
from storefront.ordering.order import Order


def load_order(order_id) -> Order:
    try:
        return current_domain.repository_for(Order).get(str(order_id))
    except ObjectNotFoundError:
        raise OrderNotFound(order_id)


def orders_for_user(user_id) -> list[Order]:
    orders = current_domain.repository_for(Order)._dao.query.filter(user_id=str(user_id)).all().items
    return sorted(orders, key=lambda order: order.created_at, reverse=True)


def known_customer_ids() -> list[str]:
    orders = current_domain.repository_for(Order)._dao.query.all().items
    return sorted({str(order.user_id) for order in orders})
