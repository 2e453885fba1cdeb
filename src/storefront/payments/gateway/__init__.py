"""Payment provider registry.

Maps each ``ProviderName`` to its adapter. ``build_registry()`` reads
``PAYMENT_GATEWAY`` from the environment: ``fake`` (the default) wires a
``FakeProviderAdapter`` for every provider, ``live`` wires the real ones.
"""

import os

import httpx

from storefront.errors import ValidationError
from storefront.payments.gateway.fake import FakeProviderAdapter
from storefront.payments.gateway.port import ProviderAdapter, ProviderName


class ProviderRegistry:
    def __init__(self, adapters=()):
        self._adapters: dict[ProviderName, ProviderAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: ProviderAdapter) -> None:
        self._adapters[adapter.name] = adapter

    def get_adapter(self, name) -> ProviderAdapter:
        try:
            provider = name if isinstance(name, ProviderName) else ProviderName(str(name).lower())
            return self._adapters[provider]
        except (ValueError, KeyError):
            raise ValidationError(f"Unsupported payment provider: {name}", {"provider": str(name)})

    def __contains__(self, name) -> bool:
        try:
            self.get_adapter(name)
        except ValidationError:
            return False
        return True


def fake_registry() -> ProviderRegistry:
    return ProviderRegistry(FakeProviderAdapter(name) for name in ProviderName)


def live_registry(currency: str = "KES", timeout: float = 10.0, client: httpx.Client | None = None) -> ProviderRegistry:
    from storefront.payments.gateway.mpesa import MpesaAdapter
    from storefront.payments.gateway.paypal import PaypalAdapter
    from storefront.payments.gateway.paystack import PaystackAdapter

    return ProviderRegistry(
        [
            MpesaAdapter.from_env(timeout=timeout, client=client),
            PaystackAdapter.from_env(currency=currency, timeout=timeout, client=client),
            PaypalAdapter.from_env(timeout=timeout, client=client),
        ]
    )


def build_registry(currency: str = "KES", timeout: float = 10.0) -> ProviderRegistry:
    """Return the registry configured by ``PAYMENT_GATEWAY``."""
    gateway = os.environ.get("PAYMENT_GATEWAY", "fake")
    if gateway == "fake":
        return fake_registry()
    if gateway == "live":
        return live_registry(currency=currency, timeout=timeout)
    raise ValueError(f"Unknown payment gateway: {gateway}")
