from datetime import datetime
from typing import List, Optional

from core.helpers import estimated_delivery_date, format_vnd
from models import (
    Address,
    AutoFixResult,
    CartLine,
    FlowState,
    Order,
    OrderStatus,
    OrderSummary,
    PaymentMethod,
    ShippingInfo,
)

STATUS_EMOJI = {
    OrderStatus.PROCESSING: "⏳",
    OrderStatus.SHIPPED: "🚚",
    OrderStatus.DELIVERED: "✅",
    OrderStatus.CANCELLED: "❌",
}

PAYMENT_LABELS = {
    PaymentMethod.COD: "💵 COD (Tiền mặt khi nhận hàng)",
    PaymentMethod.ONLINE: "🏦 VNPay (Thanh toán online)",
}


# ═══════════════════════════════════════════
# ERRORS & GUIDANCE
# ═══════════════════════════════════════════

def login_required_message() -> str:
    return "❌ Bạn cần đăng nhập để đặt hàng. Vui lòng đăng nhập và thử lại!"


def empty_cart_message() -> str:
    return (
        "🛒 **Giỏ hàng trống**\n\n"
        "Bạn chưa có sản phẩm nào trong giỏ hàng. "
        "Hãy thêm sản phẩm vào giỏ trước khi đặt hàng nhé!"
    )


def address_missing_message() -> str:
    return (
        "📍 **Chưa có địa chỉ giao hàng**\n\n"
        "Vui lòng cập nhật địa chỉ trong trang tài khoản, sau đó nhập \"tiếp tục\" để đặt hàng."
    )


def payment_missing_message() -> str:
    return "💳 Vui lòng chọn phương thức thanh toán trước: nhập **\"COD\"** hoặc **\"VNPay\"**."


def shipping_missing_message() -> str:
    return "📦 Chưa tính được phí vận chuyển. Vui lòng chọn lại địa chỉ giao hàng."


def cancelled_message() -> str:
    return (
        "❌ **ĐÃ HỦY ĐẶT HÀNG**\n\n"
        "Giỏ hàng của bạn vẫn được giữ nguyên.\n"
        "Nhập \"đặt hàng\" bất cứ lúc nào để bắt đầu lại."
    )


def nothing_to_cancel_message() -> str:
    return "ℹ️ Hiện không có đơn hàng nào đang được xử lý."


def processing_error_message() -> str:
    return (
        "❌ **LỖI XỬ LÝ**\n\n"
        "Đã có lỗi xảy ra trong quá trình đặt hàng. "
        "Vui lòng thử lại hoặc nhập \"hủy\" để bắt đầu lại."
    )


def persistence_error_message() -> str:
    return (
        "❌ **KHÔNG THỂ TẠO ĐƠN HÀNG**\n\n"
        "Hệ thống chưa lưu được đơn hàng của bạn. "
        "Nhập \"Có\" để thử lại hoặc \"Không\" để hủy."
    )


def session_busy_message() -> str:
    return "⏳ Tin nhắn trước của bạn vẫn đang được xử lý, vui lòng đợi trong giây lát."


def guidance_message(state: FlowState, address_count: int = 0) -> str:
    if state == FlowState.ADDRESS_SELECTION:
        return f"📍 Vui lòng nhập số thứ tự địa chỉ giao hàng (1-{max(address_count, 1)})."
    if state == FlowState.PAYMENT_SELECTION:
        return "💳 Vui lòng chọn phương thức thanh toán: nhập **\"1\"** (COD) hoặc **\"2\"** (VNPay)."
    if state == FlowState.SUMMARY_SHOWN:
        return "✅ Nhập **\"Có\"** để xác nhận đơn hàng hoặc **\"Không\"** để hủy."
    if state == FlowState.CART_VALIDATED:
        return "🚀 Nhập **\"có\"** để chọn địa chỉ giao hàng, hoặc **\"hủy\"** để dừng lại."
    if state == FlowState.ERROR_STATE:
        return "🔄 Nhập **\"đặt hàng\"** để thử lại hoặc **\"hủy\"** để dừng."
    return (
        "🤔 **CẦN HỖ TRỢ?**\n\n"
        "• Nhập \"đặt hàng\" để bắt đầu thanh toán giỏ hàng\n"
        "• Nhập \"hủy\" để dừng quá trình đặt hàng"
    )


# ═══════════════════════════════════════════
# CHECKOUT STEPS
# ═══════════════════════════════════════════

def auto_fix_message(fix: AutoFixResult) -> str:
    lines = ["✅ **Đã tự động điều chỉnh giỏ hàng:**", ""]
    if fix.removed:
        lines.append(f"🗑️ **Đã xóa {len(fix.removed)} sản phẩm không có sẵn:**")
        lines.extend(f"• {line.name}" for line in fix.removed)
        lines.append("")
    if fix.adjusted:
        lines.append(f"📦 **Đã điều chỉnh số lượng {len(fix.adjusted)} sản phẩm:**")
        lines.extend(f"• {a.name}: {a.old_quantity} → {a.new_quantity}" for a in fix.adjusted)
        lines.append("")
    if fix.remaining_count > 0:
        lines.append(f"🛒 **Giỏ hàng còn lại:** {fix.remaining_count} sản phẩm")
        lines.append(f"💰 **Tổng tiền mới:** {format_vnd(fix.new_total)}")
    else:
        lines.append("❌ **Giỏ hàng trống** sau khi điều chỉnh")
    return "\n".join(lines)


def cart_summary_message(lines: List[CartLine], fix: Optional[AutoFixResult] = None) -> str:
    subtotal = sum(line.line_total for line in lines)
    parts = []
    if fix is not None and fix.changed:
        parts.append(auto_fix_message(fix))
        parts.append("")
    parts.append("🛒 **KIỂM TRA GIỎ HÀNG**")
    parts.append("")
    parts.append(f"📦 **Sản phẩm trong giỏ ({len(lines)} sản phẩm):**")
    for i, line in enumerate(lines, 1):
        parts.append(f"{i}. **{line.name}**")
        parts.append(
            f"   💰 {format_vnd(line.unit_price)} x {line.quantity} = {format_vnd(line.line_total)}"
        )
    parts.append("")
    parts.append(f"💰 **Tạm tính:** {format_vnd(subtotal)}")
    parts.append("✅ **Tất cả sản phẩm đều có sẵn**")
    parts.append("")
    parts.append("🚀 **Tiếp tục đặt hàng?**")
    parts.append("Nhập \"có\" để chọn địa chỉ giao hàng, hoặc \"hủy\" để dừng lại.")
    return "\n".join(parts)


def address_selection_message(addresses: List[Address]) -> str:
    parts = ["📍 **CHỌN ĐỊA CHỈ GIAO HÀNG**", ""]
    for i, address in enumerate(addresses, 1):
        label = "🏠 **Địa chỉ mặc định**" if address.is_default else f"📌 **Địa chỉ {i}**"
        parts.append(f"{i}. {label}")
        parts.append(f"   {address.one_line()}")
    parts.append("")
    parts.append(f"Nhập số thứ tự (1-{len(addresses)}) để chọn địa chỉ.")
    return "\n".join(parts)


def shipping_message(shipping: ShippingInfo, address: Address) -> str:
    fixed = " (phí cố định)" if shipping.fallback else ""
    return (
        f"📦 **PHÍ VẬN CHUYỂN**{' (Phí cố định)' if shipping.fallback else ''}\n\n"
        f"📍 **Giao đến:** {address.one_line()}\n"
        f"🚚 **Dịch vụ:** Giao hàng tiêu chuẩn\n"
        f"💰 **Phí vận chuyển:** {format_vnd(shipping.fee)}{fixed}\n"
        f"⏰ **Thời gian dự kiến:** {shipping.estimated_days} ngày làm việc"
    )


def payment_selection_message() -> str:
    return (
        "💳 **CHỌN PHƯƠNG THỨC THANH TOÁN**\n\n"
        "1. 💵 **COD** (Thanh toán khi nhận hàng)\n"
        "2. 🏦 **VNPay** (Thanh toán online)\n\n"
        "Nhập **\"COD\"** hoặc **\"VNPay\"** (hoặc 1 / 2) để chọn:"
    )


def order_summary_message(
    summary: OrderSummary,
    address: Address,
    payment_method: PaymentMethod,
    estimated_days: int,
) -> str:
    return (
        "📋 **XÁC NHẬN ĐƠN HÀNG**\n\n"
        f"🛒 **Sản phẩm:** {format_vnd(summary.subtotal)}\n"
        f"📦 **Phí vận chuyển:** {format_vnd(summary.shipping_fee)}\n"
        f"🏷️ **Phí dịch vụ:** {format_vnd(summary.service_fee)}\n"
        "━━━━━━━━━━━━━━━━━━━━━━━━━━━━━\n"
        f"💰 **TỔNG CỘNG: {format_vnd(summary.total)}**\n\n"
        f"📍 **Giao đến:** {address.one_line()}\n"
        f"💳 **Thanh toán:** {PAYMENT_LABELS[payment_method]}\n"
        f"📅 **Dự kiến giao:** {estimated_days} ngày làm việc\n\n"
        "✅ **XÁC NHẬN ĐẶT HÀNG?**\n"
        "Nhập **\"Có\"** để xác nhận hoặc **\"Không\"** để hủy"
    )


def stock_conflict_message(conflicts: List[dict]) -> str:
    parts = ["⚠️ **THAY ĐỔI TỒN KHO**", "", "Một số sản phẩm không còn đủ hàng:"]
    for c in conflicts:
        parts.append(f"• {c['name']}: bạn đặt {c['requested']}, chỉ còn {c['available']}")
    parts.append("")
    parts.append("Đơn hàng chưa được tạo. Hãy cập nhật giỏ hàng rồi trả lời **\"Có\"** để đặt lại, hoặc **\"Hủy\"** để dừng.")
    return "\n".join(parts)


# ═══════════════════════════════════════════
# ORDERS
# ═══════════════════════════════════════════

def order_success_message(order: Order) -> str:
    payment = PaymentMethod.COD if order.payment_method == "CashOnDelivery" else PaymentMethod.ONLINE
    msg = (
        "🎉 **ĐẶT HÀNG THÀNH CÔNG!**\n\n"
        f"📄 **Mã đơn hàng:** {order.order_number}\n"
        f"💰 **Tổng tiền:** {format_vnd(order.total_price)}\n"
        f"📅 **Ngày đặt:** {datetime.fromtimestamp(order.created_at).strftime('%d/%m/%Y')}\n"
        f"📦 **Dự kiến giao:** {estimated_delivery_date(order.created_at, order.estimated_days)}\n\n"
        "📱 **Theo dõi đơn hàng:**\n"
        f"• Nói: \"Kiểm tra đơn hàng {order.order_number}\""
    )
    if payment == PaymentMethod.ONLINE:
        msg += "\n\n💳 **Thanh toán VNPay:**\n⏰ Bạn có 15 phút để hoàn tất thanh toán."
    msg += "\n\n🛒 **Mua tiếp?** Tôi có thể giúp bạn tìm sản phẩm khác!"
    return msg


def order_already_created_message(order: Order) -> str:
    return f"✅ Đơn hàng {order.order_number} đã được tạo trước đó. Bạn không cần xác nhận lại."


def orders_list_message(orders: List[Order]) -> str:
    if not orders:
        return "📦 Bạn chưa có đơn hàng nào."
    parts = ["📦 **ĐƠN HÀNG CỦA BẠN**", ""]
    for i, order in enumerate(orders, 1):
        created = datetime.fromtimestamp(order.created_at).strftime("%d/%m/%Y")
        parts.append(f"{i}. {STATUS_EMOJI.get(order.status, '📦')} **{order.order_number}**")
        parts.append(f"   💰 {format_vnd(order.total_price)} - {order.status.value}")
        parts.append(f"   📅 {created}")
    return "\n".join(parts)
