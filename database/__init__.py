"""Database package for the Kuku Yetu API."""
from .connection import Database
from .models import (
    Base,
    Order,
    Payment,
    PaymentEvent,
    Product,
)

__all__ = [
    "Base",
    "Database",
    "Order",
    "Payment",
    "PaymentEvent",
    "Product",
]
