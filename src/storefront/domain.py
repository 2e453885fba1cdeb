"""Storefront domain — order fulfilment core.

A single bounded context owns products, orders, payments and notifications
so that order placement, stock reservation and payment resolution commit
together in one unit of work. Provider adapters, the real-time transport and
the email channel sit at the edges as pluggable ports.
"""

import structlog
from protean.domain import Domain

storefront = Domain(name="storefront")

logger = structlog.get_logger(__name__)
