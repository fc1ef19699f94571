"""
Pytest configuration and fixtures for the order checkout engine tests.

Provides in-memory collaborator stores seeded with a small catalog, a
controllable clock, a fake shipping carrier, and an engine factory.
"""

import threading
from types import SimpleNamespace
from typing import List, Optional

import pytest

from core.session import InMemorySessionStore
from models import Address, Cart, CartLine, Product
from order_handler import OrderFlowEngine
from services.shipping_service import ShippingCalculator, ShippingFeeService
from stores import InMemoryCartStore, InMemoryOrderStore, InMemoryProductStore, InMemoryUserStore

USER_ID = "user-1"
MULTI_ADDRESS_USER_ID = "user-2"
NO_ADDRESS_USER_ID = "user-3"


class FakeClock:
    """Manually advanced clock used in place of time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeShippingService(ShippingFeeService):
    """Carrier double: fixed fee, optional failure, records every call."""

    def __init__(self, fee: int = 25000, estimated_days: int = 2, fail: bool = False, delay: float = 0.0):
        self.fee = fee
        self.estimated_days = estimated_days
        self.fail = fail
        self.delay = delay
        self.calls = []
        self._release = threading.Event()

    def compute_fee(self, origin, destination, dims):
        self.calls.append((origin, destination, dims))
        if self.delay:
            self._release.wait(self.delay)
        if self.fail:
            raise ConnectionError("carrier unreachable")
        return {"fee": self.fee, "estimated_days": self.estimated_days}


def default_products() -> List[Product]:
    return [
        Product(id="p-laptop", name="Laptop Dell XPS 13", price=25_000_000, stock=5),
        Product(id="p-mouse", name="Chuột Logitech MX", price=1_500_000, stock=10),
        Product(id="p-keyboard", name="Bàn phím cơ Keychron", price=2_000_000, stock=1),
        Product(id="p-headset", name="Tai nghe Sony", price=3_000_000, stock=0),
        Product(id="p-retired", name="Máy in cũ", price=4_000_000, stock=3, active=False),
    ]


HOME = Address(
    street="12 Nguyễn Huệ", ward_name="Bến Nghé", ward_code="20107",
    district_name="Quận 1", district_id=1442, province_name="Hồ Chí Minh", province_id=202,
    is_default=True,
)
OFFICE = Address(
    street="5 Lê Lợi", ward_name="Bến Thành", ward_code="20109",
    district_name="Quận 1", district_id=1442, province_name="Hồ Chí Minh", province_id=202,
)


def make_line(product: Product, quantity: int, unit_price: Optional[int] = None) -> CartLine:
    return CartLine(
        product_id=product.id,
        name=product.name,
        quantity=quantity,
        unit_price=product.price if unit_price is None else unit_price,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def stores(clock):
    products = default_products()
    return SimpleNamespace(
        catalog={p.id: p for p in products},
        carts=InMemoryCartStore(),
        products=InMemoryProductStore(products),
        users=InMemoryUserStore({
            USER_ID: [HOME],
            MULTI_ADDRESS_USER_ID: [HOME, OFFICE],
        }),
        orders=InMemoryOrderStore(clock=clock),
    )


@pytest.fixture
def fill_cart(stores):
    """fill_cart(user_id, [(product_id, qty), ...]) stores a cart at catalog prices."""

    def _fill(user_id: str, items):
        lines = [make_line(stores.catalog[pid], qty) for pid, qty in items]
        cart = Cart(user_id=user_id, lines=lines)
        stores.carts.save(cart)
        return cart

    return _fill


@pytest.fixture
def carrier():
    return FakeShippingService()


@pytest.fixture
def make_engine(stores, clock, carrier):
    """Factory so tests can swap the carrier or the session store."""

    def _make(shipping_service=carrier, session_store=None, timeout: float = 2.0, **kwargs):
        return OrderFlowEngine(
            session_store=session_store if session_store is not None else InMemorySessionStore(clock=clock),
            cart_store=stores.carts,
            product_store=stores.products,
            user_store=stores.users,
            order_store=stores.orders,
            shipping_calculator=ShippingCalculator(shipping_service, timeout=timeout),
            clock=clock,
            **kwargs,
        )

    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()


@pytest.fixture
def user_ctx():
    return {"user_id": USER_ID}
