"""Tracking and order number generation.

Both are for human readability only and are not used as secrets.
"""

import secrets
import string

from storefront.utils.clock import utc_now

_SUFFIX_ALPHABET = string.digits + string.ascii_uppercase


def generate_tracking_number(prefix: str = "SF", now=None) -> str:
    """Prefix + last six digits of the millisecond clock + three random characters."""
    now = now or utc_now()
    millis = str(int(now.timestamp() * 1000))[-6:]
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(3))
    return f"{prefix}{millis}{suffix}"


def generate_order_number(now=None) -> str:
    now = now or utc_now()
    return f"ORD-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"
