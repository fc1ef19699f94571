"""
Inventory Validator
===================
Checks cart lines against live product stock and price.

Per line, first match wins:
  not found  > unavailable > insufficient stock > price changed > valid
  (ERROR)      (ERROR)       (ERROR if 0 left,    (INFO)          (SUCCESS)
                              else WARNING)
"""

from typing import Dict, List, Optional, Tuple

from chat_logger import get_logger
from core.helpers import format_vnd
from models import (
    AdjustedLine,
    AutoFixResult,
    Cart,
    CartLine,
    InventoryReport,
    LineValidation,
    Recommendation,
    Severity,
    ValidationStatus,
)

logger = get_logger("order_chat")

EMPTY_CART_MESSAGE = "Giỏ hàng trống hoặc không hợp lệ"


class InventoryValidator:
    """Validates and repairs carts against the product store."""

    def __init__(self, product_store):
        self.products = product_store

    # ─────────────────────────────────────────────
    # VALIDATION
    # ─────────────────────────────────────────────

    def validate(self, lines: List[CartLine]) -> InventoryReport:
        if not lines:
            return InventoryReport(success=False, has_issues=True, message=EMPTY_CART_MESSAGE)

        results = [self._validate_line(line) for line in lines]
        success = not any(r.severity == Severity.ERROR for r in results)
        has_issues = any(r.severity in (Severity.ERROR, Severity.WARNING) for r in results)
        message, recommendations, counts = self._summarize(results)

        logger.info(
            f"[Inventory] validated {counts['total']} lines: "
            f"{counts['errors']} errors, {counts['warnings']} warnings, "
            f"{counts['price_changes']} price changes"
        )
        return InventoryReport(
            success=success,
            results=results,
            has_issues=has_issues,
            message=message,
            recommendations=recommendations,
            counts=counts,
        )

    def quick_validate(self, lines: List[CartLine]) -> bool:
        report = self.validate(lines)
        return report.success and not report.has_issues

    def _validate_line(self, line: CartLine) -> LineValidation:
        try:
            product = self.products.get_by_id(line.product_id)
        except Exception:
            logger.exception(f"[Inventory] lookup failed for product {line.product_id}")
            return LineValidation(
                line=line,
                status=ValidationStatus.VALIDATION_ERROR,
                severity=Severity.ERROR,
                message=f"Lỗi kiểm tra sản phẩm {line.name}",
            )

        if product is None:
            return LineValidation(
                line=line,
                status=ValidationStatus.PRODUCT_NOT_FOUND,
                severity=Severity.ERROR,
                message=f"Sản phẩm {line.name} không còn tồn tại",
                available=0,
            )

        line.available_stock = product.stock

        if not product.active:
            return LineValidation(
                line=line,
                status=ValidationStatus.PRODUCT_UNAVAILABLE,
                severity=Severity.ERROR,
                message=f"{line.name} hiện không có sẵn (sản phẩm đã bị tạm ngừng)",
                available=product.stock,
            )

        if product.stock < line.quantity:
            return LineValidation(
                line=line,
                status=ValidationStatus.INSUFFICIENT_STOCK,
                severity=Severity.ERROR if product.stock <= 0 else Severity.WARNING,
                message=f"{line.name} chỉ còn {max(product.stock, 0)} sản phẩm (bạn chọn {line.quantity})",
                available=max(product.stock, 0),
                suggested_quantity=max(product.stock, 0),
            )

        if product.price != line.unit_price:
            return LineValidation(
                line=line,
                status=ValidationStatus.PRICE_CHANGED,
                severity=Severity.INFO,
                message=(
                    f"Giá {line.name} đã thay đổi từ {format_vnd(line.unit_price)} "
                    f"thành {format_vnd(product.price)}"
                ),
                available=product.stock,
                old_price=line.unit_price,
                new_price=product.price,
            )

        return LineValidation(
            line=line,
            status=ValidationStatus.VALID,
            severity=Severity.SUCCESS,
            message="OK",
            available=product.stock,
        )

    def _summarize(self, results: List[LineValidation]) -> Tuple[str, List[Recommendation], Dict[str, int]]:
        errors = [r for r in results if r.severity == Severity.ERROR]
        warnings = [r for r in results if r.severity == Severity.WARNING]
        price_changes = [r for r in results if r.status == ValidationStatus.PRICE_CHANGED]
        valid = [r for r in results if r.severity == Severity.SUCCESS]

        sections = []
        recommendations: List[Recommendation] = []

        if errors:
            sections.append(f"❌ **{len(errors)} sản phẩm có vấn đề:**")
            for r in errors:
                sections.append(f"• {r.message}")
                recommendations.append(Recommendation(
                    type="REMOVE_PRODUCT",
                    product_id=r.line.product_id,
                    product_name=r.line.name,
                ))

        if warnings:
            sections.append(f"⚠️ **{len(warnings)} sản phẩm cần điều chỉnh:**")
            for r in warnings:
                sections.append(f"• {r.message}")
                recommendations.append(Recommendation(
                    type="ADJUST_QUANTITY",
                    product_id=r.line.product_id,
                    product_name=r.line.name,
                    suggested_quantity=r.suggested_quantity,
                    current_quantity=r.line.quantity,
                ))

        if price_changes:
            sections.append(f"💰 **{len(price_changes)} sản phẩm có thay đổi giá:**")
            sections.extend(f"• {r.message}" for r in price_changes)

        if valid:
            sections.append(f"✅ **{len(valid)} sản phẩm sẵn sàng đặt hàng**")

        counts = {
            "total": len(results),
            "valid": len(valid),
            "errors": len(errors),
            "warnings": len(warnings),
            "price_changes": len(price_changes),
        }
        return "\n".join(sections), recommendations, counts

    # ─────────────────────────────────────────────
    # AUTO-FIX
    # ─────────────────────────────────────────────

    def auto_fix(self, cart: Cart, report: Optional[InventoryReport] = None) -> AutoFixResult:
        """
        Repair ``cart`` in place: drop ERROR lines, clamp WARNING lines to the
        available stock and recompute the stored total.

        Running it again on the repaired cart changes nothing.
        """
        if report is None:
            report = self.validate(cart.lines)

        removed: List[CartLine] = []
        adjusted: List[AdjustedLine] = []
        kept: List[CartLine] = []

        for result in report.results:
            line = result.line
            if result.severity == Severity.ERROR:
                removed.append(line)
                continue
            if result.severity == Severity.WARNING and result.suggested_quantity is not None:
                adjusted.append(AdjustedLine(
                    product_id=line.product_id,
                    name=line.name,
                    old_quantity=line.quantity,
                    new_quantity=result.suggested_quantity,
                ))
                line.quantity = result.suggested_quantity
            kept.append(line)

        if report.results:
            cart.lines = kept
        new_total = cart.recompute_total()

        if removed or adjusted:
            logger.info(
                f"[Inventory] auto-fix removed {len(removed)} and adjusted {len(adjusted)} lines, "
                f"new total {new_total}"
            )
        return AutoFixResult(
            removed=removed,
            adjusted=adjusted,
            remaining_count=len(cart.lines),
            new_total=new_total,
        )
