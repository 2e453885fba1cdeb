"""Application tests for OrderLifecycleManager."""

import threading

import pytest
from protean import current_domain

from storefront.domain import storefront
from storefront.errors import (
    ConflictError,
    InsufficientStock,
    InvalidTransition,
    OrderNotFound,
    ProductNotFound,
    ValidationError,
)
from storefront.inventory.product import Product, ProductStatus
from storefront.notifications.notification import Notification, NotificationType
from storefront.ordering.order import Order, OrderStatus

CUSTOMER = "cust-001"


def _product(product_id) -> Product:
    return current_domain.repository_for(Product).get(product_id)


def _orders():
    return current_domain.repository_for(Order)._dao.query.all().items


def _notifications(user_id):
    return current_domain.repository_for(Notification)._dao.query.filter(user_id=user_id).all().items


@pytest.fixture()
def two_products(add_product):
    a = add_product(name="A", price=10.0, stock=5, low_stock_threshold=1)
    b = add_product(name="B", price=25.0, stock=1, low_stock_threshold=0)
    return a, b


@pytest.fixture()
def two_line_order(services, two_products, address):
    a, b = two_products
    return services.orders.create_order(
        CUSTOMER,
        [{"product_id": a, "quantity": 3}, {"product_id": b, "quantity": 1}],
        address,
        "mpesa",
        contact_email="jane@example.com",
    )


class TestCreateOrder:
    def test_two_line_order_reserves_stock(self, two_products, two_line_order):
        a, b = two_products
        assert _product(a).stock == 2
        assert _product(b).stock == 0
        assert _product(b).status == ProductStatus.OUT_OF_STOCK.value

    def test_two_line_order_total(self, two_line_order):
        order = two_line_order.order
        assert order.subtotal == 55.0
        assert order.total == 55.0 + order.tax_amount + order.shipping_amount
        assert order.status == OrderStatus.PENDING.value

    def test_tax_and_shipping_come_from_settings(self, settings, email, two_products, address):
        from dataclasses import replace

        from storefront.payments.gateway import fake_registry
        from storefront.services import build_services

        taxed = build_services(
            settings=replace(settings, tax_rate=0.16, shipping_flat=200.0),
            providers=fake_registry(),
            email=email,
        )
        a, _ = two_products
        order = taxed.orders.create_order(CUSTOMER, [{"product_id": a, "quantity": 1}], address, "mpesa").order
        assert order.tax_amount == 1.6
        assert order.shipping_amount == 200.0
        assert order.total == 211.6

    def test_owner_is_notified(self, two_line_order):
        notifications = _notifications(CUSTOMER)
        assert len(notifications) == 1
        assert notifications[0].notification_type == NotificationType.ORDER.value

    def test_confirmation_email_is_sent(self, email, two_line_order):
        assert email.templates_sent() == ["order_confirmation"]
        assert email.sent[0].to_address == "jane@example.com"

    def test_low_stock_products_are_reported_and_admins_alerted(self, two_products, two_line_order):
        a, b = two_products
        assert set(two_line_order.low_stock_product_ids) == {b}
        alerts = _notifications("admin-001")
        assert [n.notification_type for n in alerts] == [NotificationType.INVENTORY_ALERT.value]

    def test_shortfall_leaves_stock_and_orders_unchanged(self, services, two_products, address):
        a, b = two_products
        with pytest.raises(InsufficientStock):
            services.orders.create_order(
                CUSTOMER,
                [{"product_id": a, "quantity": 3}, {"product_id": b, "quantity": 2}],
                address,
                "mpesa",
            )
        assert _product(a).stock == 5
        assert _product(b).stock == 1
        assert _orders() == []

    def test_unknown_product_is_not_found(self, services, address):
        with pytest.raises(ProductNotFound):
            services.orders.create_order(CUSTOMER, [{"product_id": "nope", "quantity": 1}], address, "mpesa")
        assert _orders() == []

    @pytest.mark.parametrize(
        "lines",
        [
            [],
            [{"product_id": "p", "quantity": 0}],
            [{"product_id": "p", "quantity": 1.5}],
            [{"quantity": 1}],
        ],
    )
    def test_malformed_lines_are_rejected(self, services, address, lines):
        with pytest.raises(ValidationError):
            services.orders.create_order(CUSTOMER, lines, address, "mpesa")

    def test_unknown_payment_method_is_rejected(self, services, two_products, address):
        a, _ = two_products
        with pytest.raises(ValidationError):
            services.orders.create_order(CUSTOMER, [{"product_id": a, "quantity": 1}], address, "bitcoin")
        assert _product(a).stock == 5

    def test_notification_failure_does_not_fail_the_order(self, services, two_products, address, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("notification store down")

        monkeypatch.setattr(services.notifications, "notify", broken)
        a, _ = two_products
        result = services.orders.create_order(CUSTOMER, [{"product_id": a, "quantity": 1}], address, "mpesa")

        assert result.order.status == OrderStatus.PENDING.value
        failed = [effect for effect in result.side_effects if not effect.ok]
        assert [effect.name for effect in failed] == ["order_placed_notification"]

    def test_throttled_owner_still_gets_a_committed_order(self, services, settings, two_products, address):
        key = services.rate_limiter.key_for(CUSTOMER)
        for _ in range(settings.rate_limit_max):
            services.rate_limiter.hit(key)
        a, _ = two_products

        result = services.orders.create_order(
            CUSTOMER, [{"product_id": a, "quantity": 2}], address, "mpesa", contact_email="jane@example.com"
        )

        assert result.order.status == OrderStatus.PENDING.value
        assert services.orders.get_order(result.order.id).total == 20.0
        assert _product(a).stock == 3
        effects = {effect.name: effect for effect in result.side_effects}
        assert not effects["order_placed_notification"].ok
        assert "rate limit" in effects["order_placed_notification"].error.lower()
        assert effects["order_confirmation_email"].ok
        assert _notifications(CUSTOMER) == []

    def test_refused_confirmation_email_does_not_fail_the_order(self, services, email, two_products, address):
        email.refuse("Mailbox full")
        a, _ = two_products

        result = services.orders.create_order(
            CUSTOMER, [{"product_id": a, "quantity": 1}], address, "mpesa", contact_email="jane@example.com"
        )

        assert services.orders.get_order(result.order.id).status == OrderStatus.PENDING.value
        effects = {effect.name: effect for effect in result.side_effects}
        assert not effects["order_confirmation_email"].ok
        assert "Mailbox full" in effects["order_confirmation_email"].error
        assert effects["order_placed_notification"].ok
        assert email.sent == []


class TestCancelOrder:
    def test_cancel_restores_stock(self, services, two_products, two_line_order):
        a, b = two_products
        result = services.orders.cancel_order(two_line_order.order.id, actor=CUSTOMER, reason="Changed my mind")

        assert result.order.status == OrderStatus.CANCELLED.value
        assert _product(a).stock == 5
        assert _product(b).stock == 1
        assert _product(b).status == ProductStatus.ACTIVE.value

    def test_cancel_notifies_owner(self, services, two_line_order):
        services.orders.cancel_order(two_line_order.order.id, actor=CUSTOMER)
        order_notes = [n for n in _notifications(CUSTOMER) if n.notification_type == NotificationType.ORDER.value]
        cancelled = [n for n in order_notes if n.data.get("status") == OrderStatus.CANCELLED.value]
        assert len(cancelled) == 1

    def test_second_cancel_conflicts_and_does_not_double_restore(self, services, two_products, two_line_order):
        a, b = two_products
        services.orders.cancel_order(two_line_order.order.id, actor=CUSTOMER)
        with pytest.raises(ConflictError):
            services.orders.cancel_order(two_line_order.order.id, actor=CUSTOMER)
        assert _product(a).stock == 5
        assert _product(b).stock == 1

    def test_concurrent_cancels_restore_once(self, services, two_products, two_line_order):
        a, b = two_products
        outcomes = []

        def cancel():
            with storefront.domain_context():
                try:
                    services.orders.cancel_order(two_line_order.order.id, actor=CUSTOMER)
                    outcomes.append("cancelled")
                except InvalidTransition:
                    outcomes.append("conflict")

        threads = [threading.Thread(target=cancel) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["cancelled", "conflict", "conflict", "conflict"]
        assert _product(a).stock == 5
        assert _product(b).stock == 1

    def test_customer_cannot_cancel_someone_elses_order(self, services, two_line_order):
        with pytest.raises(OrderNotFound):
            services.orders.cancel_order(two_line_order.order.id, actor="cust-999", user_id="cust-999")


class TestUpdateStatus:
    def test_full_fulfilment_path(self, services, two_line_order):
        order_id = two_line_order.order.id
        services.orders.update_status(order_id, "processing", "admin-001")
        shipped = services.orders.update_status(order_id, "shipped", "admin-001", tracking_number="TRK-42")
        delivered = services.orders.update_status(order_id, "delivered", "admin-001")

        assert shipped.order.tracking_number == "TRK-42"
        assert delivered.order.status == OrderStatus.DELIVERED.value

    def test_delivered_requires_shipped(self, services, two_line_order):
        order_id = two_line_order.order.id
        services.orders.update_status(order_id, "processing", "admin-001")
        with pytest.raises(InvalidTransition):
            services.orders.update_status(order_id, "delivered", "admin-001")
        assert services.orders.get_order(order_id).status == OrderStatus.PROCESSING.value

    def test_unknown_status_is_rejected(self, services, two_line_order):
        with pytest.raises(ValidationError):
            services.orders.update_status(two_line_order.order.id, "teleported", "admin-001")

    def test_status_change_emails_customer(self, services, email, two_line_order):
        services.orders.update_status(two_line_order.order.id, "processing", "admin-001")
        assert email.sent[-1].template_name == "order_status"
        assert email.sent[-1].data["status"] == "processing"

    def test_unknown_order_is_not_found(self, services):
        with pytest.raises(OrderNotFound):
            services.orders.update_status("missing", "processing", "admin-001")


class TestReads:
    def test_get_order_checks_owner(self, services, two_line_order):
        order_id = two_line_order.order.id
        assert services.orders.get_order(order_id, user_id=CUSTOMER).id == order_id
        with pytest.raises(OrderNotFound):
            services.orders.get_order(order_id, user_id="cust-999")

    def test_list_orders_returns_only_mine(self, services, place_order):
        place_order(user_id=CUSTOMER)
        place_order(user_id=CUSTOMER)
        place_order(user_id="cust-002")
        assert len(services.orders.list_orders(CUSTOMER)) == 2
