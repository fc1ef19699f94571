"""
Persistence collaborators consumed by the order flow.

The engine only talks to these interfaces; production deployments plug in
database-backed implementations. The in-memory versions below back the
development server and the test-suite.
"""

import copy
import threading
import time
import uuid
from typing import Callable, Dict, List, Optional

from chat_logger import get_logger
from models import Address, Cart, Order, Product

logger = get_logger("order_chat")


# ═══════════════════════════════════════════
# INTERFACES
# ═══════════════════════════════════════════

class CartStore:
    def get_by_user(self, user_id: str) -> Cart:
        raise NotImplementedError

    def save(self, cart: Cart) -> None:
        raise NotImplementedError

    def delete_by_user(self, user_id: str) -> None:
        raise NotImplementedError


class ProductStore:
    def get_by_id(self, product_id: str) -> Optional[Product]:
        raise NotImplementedError

    def decrement_stock_and_increment_sold(self, product_id: str, quantity: int) -> None:
        raise NotImplementedError


class UserStore:
    def get_address(self, user_id: str) -> Optional[Address]:
        raise NotImplementedError

    def get_addresses(self, user_id: str) -> List[Address]:
        raise NotImplementedError


class OrderStore:
    def create(self, order_data: dict) -> Order:
        raise NotImplementedError

    def list_by_user(self, user_id: str, limit: int = 5) -> List[Order]:
        raise NotImplementedError


# ═══════════════════════════════════════════
# IN-MEMORY IMPLEMENTATIONS
# ═══════════════════════════════════════════

class InMemoryCartStore(CartStore):
    def __init__(self):
        self._carts: Dict[str, Cart] = {}
        self._lock = threading.Lock()

    def get_by_user(self, user_id: str) -> Cart:
        with self._lock:
            cart = self._carts.get(user_id)
            return copy.deepcopy(cart) if cart else Cart(user_id=user_id)

    def save(self, cart: Cart) -> None:
        cart.recompute_total()
        with self._lock:
            self._carts[cart.user_id] = copy.deepcopy(cart)

    def delete_by_user(self, user_id: str) -> None:
        with self._lock:
            self._carts.pop(user_id, None)


class InMemoryProductStore(ProductStore):
    def __init__(self, products: Optional[List[Product]] = None):
        self._products: Dict[str, Product] = {}
        self._lock = threading.Lock()
        for product in products or []:
            self.add(product)

    def add(self, product: Product) -> None:
        with self._lock:
            self._products[product.id] = copy.deepcopy(product)

    def get_by_id(self, product_id: str) -> Optional[Product]:
        with self._lock:
            product = self._products.get(product_id)
            return copy.deepcopy(product) if product else None

    def decrement_stock_and_increment_sold(self, product_id: str, quantity: int) -> None:
        with self._lock:
            product = self._products.get(product_id)
            if product is None:
                raise KeyError(f"Unknown product {product_id}")
            if product.stock < quantity:
                # Concurrent commits may race; stock never goes below zero
                logger.warning(
                    f"[Stock] product {product_id} has {product.stock} left, "
                    f"decrement of {quantity} clamped to zero"
                )
            product.stock = max(0, product.stock - quantity)
            product.sold += quantity


class InMemoryUserStore(UserStore):
    def __init__(self, addresses: Optional[Dict[str, List[Address]]] = None):
        self._addresses: Dict[str, List[Address]] = copy.deepcopy(addresses or {})

    def set_addresses(self, user_id: str, addresses: List[Address]) -> None:
        self._addresses[user_id] = copy.deepcopy(addresses)

    def get_addresses(self, user_id: str) -> List[Address]:
        return copy.deepcopy(self._addresses.get(user_id, []))

    def get_address(self, user_id: str) -> Optional[Address]:
        addresses = self.get_addresses(user_id)
        if not addresses:
            return None
        return next((a for a in addresses if a.is_default), addresses[0])


class InMemoryOrderStore(OrderStore):
    def __init__(self, clock: Callable[[], float] = time.time):
        self._orders: Dict[str, Order] = {}
        self._lock = threading.Lock()
        self.clock = clock

    def create(self, order_data: dict) -> Order:
        order = Order(id=uuid.uuid4().hex, created_at=self.clock(), **order_data)
        with self._lock:
            self._orders[order.id] = copy.deepcopy(order)
        return order

    def list_by_user(self, user_id: str, limit: int = 5) -> List[Order]:
        with self._lock:
            orders = [o for o in self._orders.values() if o.user_id == user_id]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return copy.deepcopy(orders[:limit])

    def __len__(self) -> int:
        return len(self._orders)
