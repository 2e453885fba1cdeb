"""Service wiring.

``build_services`` assembles one instance of every stateful collaborator
(connection registry, rate limiter, locks) and hands the same instances to
every manager. The API and the sweep runner share one bundle; tests build
their own.
"""

from dataclasses import dataclass

from storefront.config import Settings
from storefront.inventory.ledger import InventoryLedger
from storefront.notifications.channel.email_port import EmailPort
from storefront.notifications.directory import OrderCustomerDirectory, UserDirectory
from storefront.notifications.rate_limit import SlidingWindowRateLimiter
from storefront.notifications.registry import ConnectionRegistry
from storefront.notifications.service import NotificationService
from storefront.ordering.lifecycle import OrderLifecycleManager
from storefront.payments.gateway import ProviderRegistry, build_registry
from storefront.payments.manager import PaymentTransactionManager
from storefront.utils.locks import KeyedLocks


@dataclass
class Services:
    settings: Settings
    locks: KeyedLocks
    connections: ConnectionRegistry
    rate_limiter: SlidingWindowRateLimiter
    notifications: NotificationService
    inventory: InventoryLedger
    providers: ProviderRegistry
    payments: PaymentTransactionManager
    orders: OrderLifecycleManager


def build_services(
    settings: Settings | None = None,
    providers: ProviderRegistry | None = None,
    email: EmailPort | None = None,
    directory: UserDirectory | None = None,
) -> Services:
    settings = settings or Settings.from_env()
    locks = KeyedLocks()
    connections = ConnectionRegistry()
    rate_limiter = SlidingWindowRateLimiter(
        window_seconds=settings.rate_limit_window_seconds,
        max_requests=settings.rate_limit_max,
    )
    notifications = NotificationService(
        settings=settings,
        registry=connections,
        rate_limiter=rate_limiter,
        directory=directory or OrderCustomerDirectory(settings.admin_user_ids),
    )
    providers = providers or build_registry(currency=settings.currency, timeout=settings.provider_timeout_seconds)
    payments = PaymentTransactionManager(settings, registry=providers, notifications=notifications, locks=locks)
    orders = OrderLifecycleManager(settings, notifications=notifications, payments=payments, email=email, locks=locks)

    return Services(
        settings=settings,
        locks=locks,
        connections=connections,
        rate_limiter=rate_limiter,
        notifications=notifications,
        inventory=InventoryLedger(locks),
        providers=providers,
        payments=payments,
        orders=orders,
    )
