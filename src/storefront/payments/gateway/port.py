"""Payment provider port (abstract interface).

Every provider protocol (mobile-money push, hosted redirect, wallet) is a
variant of ``ProviderAdapter``. The payment manager only ever calls these
capabilities and dispatches on ``ProviderName``; provider-specific
payload shapes stay inside the adapter.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum


class ProviderName(Enum):
    MPESA = "mpesa"
    PAYSTACK = "paystack"
    PAYPAL = "paypal"


class CallbackStatus(Enum):
    PAID = "paid"
    FAILED = "failed"
    PENDING = "pending"  # Informational callback; nothing to resolve yet


@dataclass(frozen=True)
class ProviderRef:
    """What the provider handed back when a payment was initiated."""

    reference: str
    redirect_url: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CallbackOutcome:
    """A verified provider callback, reduced to what the manager needs."""

    reference: str
    status: CallbackStatus
    provider_transaction_id: str | None = None
    failure_reason: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RefundOutcome:
    success: bool
    provider_refund_id: str | None = None
    status: str | None = None
    failure_reason: str | None = None


class ProviderAdapter(ABC):
    """Abstract payment provider interface."""

    name: ProviderName
    # Request header carrying the callback signature
    signature_header: str
    # Metadata key, recorded from the success callback, that refunds are issued against
    refund_key: str

    def validate_details(self, method_details: dict) -> None:
        """Reject unusable payment details before any attempt is recorded."""

    @abstractmethod
    def initiate(self, amount: float, reference: str, method_details: dict) -> ProviderRef:
        """Start a payment with the provider.

        Raises ``ProviderError`` (or ``ProviderTimeout``) when the provider
        cannot be reached or rejects the request.
        """
        ...

    @abstractmethod
    def verify_callback(self, raw_body: bytes, signature: str | None) -> CallbackOutcome:
        """Authenticate a callback and extract its outcome.

        Raises ``SignatureError`` before any field of the payload is trusted.
        """
        ...

    @abstractmethod
    def query_status(self, reference: str) -> CallbackOutcome:
        """Ask the provider where a payment stands, for when no callback has arrived.

        Returns a ``PENDING`` outcome while the provider has no final answer.
        """
        ...

    @abstractmethod
    def refund(self, provider_transaction_id: str, amount: float, reason: str) -> RefundOutcome:
        """Refund a previously captured payment."""
        ...
