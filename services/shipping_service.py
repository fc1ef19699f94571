"""
Shipping Fee Service
====================
Quotes delivery fees for a checkout.

  - GHNShippingClient   → POST {GHN_API_URL}/v2/shipping-order/fee
  - ShippingCalculator  → package aggregation, bounded timeout, fallback fee

A failing or slow carrier never breaks the order flow: the calculator
substitutes FALLBACK_SHIPPING_FEE and marks the quote ``fallback=True``.
"""

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import List, Optional

import requests as http_requests

from app_config import (
    DEFAULT_ESTIMATED_DAYS,
    DEFAULT_ITEM_HEIGHT,
    DEFAULT_ITEM_LENGTH,
    DEFAULT_ITEM_WEIGHT,
    DEFAULT_ITEM_WIDTH,
    FALLBACK_SHIPPING_FEE,
    GHN_API_URL,
    GHN_SERVICE_TYPE_ID,
    GHN_SHOP_ID,
    GHN_TOKEN,
    REQUEST_HEADERS,
    SHIPPING_TIMEOUT_SECONDS,
    WAREHOUSE_DISTRICT_ID,
    WAREHOUSE_WARD_CODE,
)
from chat_logger import get_logger
from exceptions import ShippingCalculationFailed
from models import Address, CartLine, PackageDimensions, ShippingInfo

logger = get_logger("order_chat")

# Shared by every calculator; carrier calls are short and bounded by their timeout
carrier_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="shipping")


class ShippingFeeService:
    """Carrier interface: ``compute_fee`` returns {fee, estimated_days} or raises."""

    def compute_fee(self, origin: dict, destination: Address, dims: PackageDimensions) -> dict:
        raise NotImplementedError


def warehouse_origin() -> dict:
    return {"district_id": WAREHOUSE_DISTRICT_ID, "ward_code": WAREHOUSE_WARD_CODE}


def aggregate_package(lines: List[CartLine]) -> PackageDimensions:
    """
    Combine cart lines into one parcel: weights and heights stack per unit,
    length and width take the largest line. Never smaller than one default item.
    """
    weight = sum(line.weight * line.quantity for line in lines)
    length = max((line.length for line in lines), default=0)
    width = max((line.width for line in lines), default=0)
    height = sum(line.height * line.quantity for line in lines)
    return PackageDimensions(
        weight=max(weight, DEFAULT_ITEM_WEIGHT),
        length=max(length, DEFAULT_ITEM_LENGTH),
        width=max(width, DEFAULT_ITEM_WIDTH),
        height=max(height, DEFAULT_ITEM_HEIGHT),
    )


class GHNShippingClient(ShippingFeeService):
    """HTTP client for the GHN fee endpoint."""

    def __init__(
        self,
        base_url: str = GHN_API_URL,
        token: str = GHN_TOKEN,
        shop_id: str = GHN_SHOP_ID,
        timeout: float = SHIPPING_TIMEOUT_SECONDS,
    ):
        self.base = base_url.rstrip("/")
        self.timeout = timeout
        self.session = http_requests.Session()
        self.session.headers.update(REQUEST_HEADERS)
        self.session.headers.update({"Token": token, "ShopId": str(shop_id)})

    def compute_fee(self, origin: dict, destination: Address, dims: PackageDimensions) -> dict:
        payload = {
            "from_district_id": int(origin["district_id"]),
            "from_ward_code": str(origin["ward_code"]),
            "service_type_id": GHN_SERVICE_TYPE_ID,
            "to_district_id": int(destination.district_id),
            "to_ward_code": str(destination.ward_code),
            "weight": int(dims.weight),
            "length": int(dims.length),
            "width": int(dims.width),
            "height": int(dims.height),
            "insurance_value": 0,
            "cod_value": 0,
            "coupon": None,
        }
        try:
            resp = self.session.post(
                f"{self.base}/v2/shipping-order/fee",
                json=payload,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except (http_requests.exceptions.RequestException, ValueError) as e:
            raise ShippingCalculationFailed(f"GHN fee request failed: {e}") from e

        data = body.get("data") or {}
        fee = data.get("total", data.get("service_fee"))
        if body.get("code") != 200 or fee is None:
            raise ShippingCalculationFailed(f"GHN returned no fee: {body.get('message', body)}")
        return {"fee": int(fee), "estimated_days": DEFAULT_ESTIMATED_DAYS}


class ShippingCalculator:
    """Wraps any ShippingFeeService with a hard timeout and the fallback fee."""

    def __init__(
        self,
        service: Optional[ShippingFeeService] = None,
        timeout: float = SHIPPING_TIMEOUT_SECONDS,
        fallback_fee: int = FALLBACK_SHIPPING_FEE,
        default_days: int = DEFAULT_ESTIMATED_DAYS,
    ):
        self.service = service
        self.timeout = timeout
        self.fallback_fee = fallback_fee
        self.default_days = default_days

    def fallback(self) -> ShippingInfo:
        return ShippingInfo(fee=self.fallback_fee, estimated_days=self.default_days, fallback=True)

    def calculate(self, destination: Address, lines: List[CartLine]) -> ShippingInfo:
        if self.service is None:
            logger.info("[Shipping] no carrier configured, using fallback fee")
            return self.fallback()

        dims = aggregate_package(lines)
        future = carrier_pool.submit(self.service.compute_fee, warehouse_origin(), destination, dims)
        try:
            quote = future.result(timeout=self.timeout)
            fee = int(quote["fee"])
            if fee < 0:
                raise ShippingCalculationFailed(f"Negative fee {fee}")
        except FutureTimeout:
            future.cancel()
            logger.warning(f"[Shipping] carrier timed out after {self.timeout}s, using fallback fee")
            return self.fallback()
        except Exception as e:
            logger.warning(f"[Shipping] carrier failed ({e}), using fallback fee")
            return self.fallback()

        info = ShippingInfo(
            fee=fee,
            estimated_days=int(quote.get("estimated_days") or self.default_days),
            fallback=False,
        )
        logger.info(f"[Shipping] quoted {info.fee} for {dims.weight}g to district {destination.district_id}")
        return info
