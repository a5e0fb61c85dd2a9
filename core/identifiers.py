"""Human-traceable identifiers for orders and payment transactions."""
import secrets
import string
import time
from typing import Optional

_ALPHABET = string.digits + string.ascii_lowercase


def _random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def _traceable_id(prefix: str, now_ms: Optional[int] = None) -> str:
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{prefix}-{timestamp}-{_random_suffix()}"


def generate_order_id(now_ms: Optional[int] = None) -> str:
    """Order id of the form ORD-<epoch ms>-<9 base36 chars>."""
    return _traceable_id("ORD", now_ms)


def generate_transaction_id(now_ms: Optional[int] = None) -> str:
    """Transaction id of the form TXN-<epoch ms>-<9 base36 chars>."""
    return _traceable_id("TXN", now_ms)
