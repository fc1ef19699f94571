"""Services package - exports checkout, shipping and message modules."""

from .order_service import CheckoutService
from .shipping_service import (
    ShippingFeeService,
    GHNShippingClient,
    ShippingCalculator,
    aggregate_package,
)

__all__ = [
    "CheckoutService",
    "ShippingFeeService",
    "GHNShippingClient",
    "ShippingCalculator",
    "aggregate_package",
]
