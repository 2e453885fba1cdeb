"""Best-effort side effects.

Notifications and emails triggered by an order or payment change run after
the change has committed. Their failures are logged and reported as a
``SideEffectResult`` that callers are free to ignore; they never propagate.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from storefront.errors import RateLimitExceeded

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SideEffectResult:
    name: str
    ok: bool
    value: Any = None
    error: str | None = None


def best_effort(name: str, fn: Callable[..., Any], *args, **kwargs) -> SideEffectResult:
    """Run ``fn`` and capture its outcome instead of raising."""
    try:
        value = fn(*args, **kwargs)
    except RateLimitExceeded as exc:
        logger.warning("Side effect throttled", side_effect=name, key=exc.key)
        return SideEffectResult(name=name, ok=False, error=exc.message)
    except Exception as exc:
        logger.exception("Side effect failed", side_effect=name, error=str(exc))
        return SideEffectResult(name=name, ok=False, error=str(exc))
    return SideEffectResult(name=name, ok=True, value=value)
