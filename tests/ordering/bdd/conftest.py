"""Shared BDD fixtures and step definitions for ordering scenarios."""

import pytest
from protean import current_domain
from pytest_bdd import given, parsers, then

from storefront.notifications.notification import Notification
from storefront.payments.gateway.port import CallbackStatus


@pytest.fixture()
def products():
    """Product ids by scenario name."""
    return {}


@pytest.fixture()
def cart():
    return []


@pytest.fixture()
def outcome():
    """What the last When step produced: the order id, or the error it raised."""
    return {"order_id": None, "error": None}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('a product "{name}" priced {price:f} with {stock:d} in stock'))
def _(add_product, products, name, price, stock):
    products[name] = add_product(name=name, price=price, stock=stock, low_stock_threshold=0)


@given(parsers.cfparse('the cart holds {quantity:d} of "{name}"'))
def _(cart, products, quantity, name):
    cart.append({"product_id": products[name], "quantity": quantity})


@given(parsers.cfparse('customer "{user_id}" has placed the order'))
def _(services, cart, address, outcome, user_id):
    result = services.orders.create_order(user_id, cart, address, "mpesa")
    outcome["order_id"] = str(result.order.id)


@given(parsers.cfparse('"{actor}" has cancelled the order'))
def _(services, outcome, actor):
    services.orders.cancel_order(outcome["order_id"], actor=actor)


@given("the order has been paid")
def _(services, outcome):
    started = services.payments.initiate(outcome["order_id"], "mpesa", {"phone_number": "254712345678"})
    adapter = services.providers.get_adapter("mpesa")
    body, signature = adapter.build_callback(started.payment.provider_reference, CallbackStatus.PAID)
    services.payments.handle_callback("mpesa", body, signature)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order is "{status}"'))
def _(services, outcome, status):
    assert services.orders.get_order(outcome["order_id"]).status == status


@then(parsers.cfparse("the order subtotal is {subtotal:f}"))
def _(services, outcome, subtotal):
    assert services.orders.get_order(outcome["order_id"]).subtotal == subtotal


@then(parsers.cfparse('the order payment is "{payment_status}"'))
def _(services, outcome, payment_status):
    assert services.orders.get_order(outcome["order_id"]).payment_status == payment_status


@then(parsers.cfparse('the order tracking number is "{tracking_number}"'))
def _(services, outcome, tracking_number):
    assert services.orders.get_order(outcome["order_id"]).tracking_number == tracking_number


@then(parsers.cfparse('product "{name}" has {stock:d} in stock'))
def _(services, products, name, stock):
    assert services.inventory.get_product(products[name]).stock == stock


@then(parsers.cfparse('product "{name}" is "{status}"'))
def _(services, products, name, status):
    assert services.inventory.get_product(products[name]).status == status


@then(parsers.cfparse('the request is refused as "{kind}"'))
def _(outcome, kind):
    assert outcome["error"] is not None
    assert outcome["error"].kind == kind


@then(parsers.cfparse('customer "{user_id}" has an "{notification_type}" notification saying the order was "{status}"'))
def _(user_id, notification_type, status):
    notifications = current_domain.repository_for(Notification)._dao.query.filter(user_id=user_id).all().items
    matching = [
        n for n in notifications if n.notification_type == notification_type and n.data.get("status") == status
    ]
    assert len(matching) == 1
