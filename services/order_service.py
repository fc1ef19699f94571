"""
Checkout Service
================
Builds order summaries and runs the commit, the single side-effecting step
of the order flow:

  1. re-validate the live cart against current stock (no auto-fix here)
  2. recompute totals from the cart's line prices + stored shipping fee
  3. persist the order                     → PersistenceError on failure
  4. decrement stock / increment sold      → best effort, per line
  5. clear the cart

Order creation happens at most once per confirmation; stock adjustment is
at-least-once and is never rolled back.
"""

from typing import List

from app_config import SERVICE_FEE
from chat_logger import get_logger, mask_identifier
from exceptions import AddressMissing, EmptyCart, PaymentMethodMissing, PersistenceError, StockConflict
from models import (
    InventoryReport,
    Order,
    OrderContext,
    OrderItem,
    OrderSource,
    OrderStatus,
    OrderSummary,
    ValidationStatus,
)

logger = get_logger("order_chat")


class CheckoutService:
    """
    Turns a completed OrderContext into a persisted Order:
      - build_summary(context)  → OrderSummary shown to the user
      - commit(user_id, context) → Order
    """

    def __init__(self, cart_store, product_store, order_store, validator, service_fee: int = SERVICE_FEE):
        self.carts = cart_store
        self.products = product_store
        self.orders = order_store
        self.validator = validator
        self.service_fee = service_fee

    # ─────────────────────────────────────────────
    # SUMMARY
    # ─────────────────────────────────────────────

    def require_checkout_details(self, context: OrderContext) -> None:
        if context.selected_address is None or context.shipping is None:
            raise AddressMissing("Shipping address has not been selected")
        if context.payment_method is None:
            raise PaymentMethodMissing("Payment method has not been selected")

    def build_summary(self, context: OrderContext) -> OrderSummary:
        self.require_checkout_details(context)
        return OrderSummary.from_lines(context.cart, context.shipping.fee, self.service_fee)

    # ─────────────────────────────────────────────
    # COMMIT
    # ─────────────────────────────────────────────

    def commit(self, user_id: str, context: OrderContext) -> Order:
        self.require_checkout_details(context)
        who = mask_identifier(user_id)
        logger.info(f"[Checkout] commit started for user {who}")

        # Step 1: authoritative re-validation against current stock
        cart = self.carts.get_by_user(user_id)
        if cart.is_empty:
            raise EmptyCart("Cart is empty at commit time")
        report = self.validator.validate(cart.lines)
        if report.has_stock_conflict:
            conflicts = self._stock_conflicts(report)
            logger.warning(f"[Checkout] stock conflict for user {who}: {len(conflicts)} lines")
            raise StockConflict(conflicts)

        # Step 2: totals from the cart's own line prices
        summary = OrderSummary.from_lines(cart.lines, context.shipping.fee, self.service_fee)

        # Step 3: persist
        order_data = {
            "user_id": user_id,
            "items": [
                OrderItem(product_id=l.product_id, name=l.name, quantity=l.quantity, price=l.unit_price)
                for l in cart.lines
            ],
            "shipping_address": context.selected_address,
            "payment_method": context.payment_method.order_value,
            "shipping_price": summary.shipping_fee,
            "service_fee": summary.service_fee,
            "total_price": summary.total,
            "status": OrderStatus.PROCESSING,
            "source": OrderSource.CHATBOT,
            "estimated_days": context.shipping.estimated_days,
        }
        try:
            order = self.orders.create(order_data)
        except Exception as e:
            logger.exception(f"[Checkout] order creation failed for user {who}")
            raise PersistenceError(f"Order creation failed: {e}") from e
        logger.info(f"[Checkout] order {order.order_number} created, total {order.total_price}")

        # Step 4: stock adjustment, best effort per line
        for line in cart.lines:
            try:
                self.products.decrement_stock_and_increment_sold(line.product_id, line.quantity)
            except Exception:
                logger.exception(
                    f"[Checkout] stock update failed for product {line.product_id} "
                    f"on order {order.order_number}"
                )

        # Step 5: clear the cart; the order already exists either way
        try:
            self.carts.delete_by_user(user_id)
        except Exception:
            logger.exception(f"[Checkout] failed to clear cart for user {who}")

        return order

    @staticmethod
    def _stock_conflicts(report: InventoryReport) -> List[dict]:
        conflicts = []
        for r in report.conflicting_lines:
            available = r.available if r.status == ValidationStatus.INSUFFICIENT_STOCK else 0
            conflicts.append({
                "product_id": r.line.product_id,
                "name": r.line.name,
                "requested": r.line.quantity,
                "available": available or 0,
                "status": r.status.value,
            })
        return conflicts
