"""
Order Intent Classifier
=======================
Maps a chat message plus the session's flow context to an order intent.

Rules live in ``ORDER_RULES``, an explicit list ordered by ``priority``;
the first rule whose predicate matches decides the intent. Tiers:

  10  exclusion      cart-management phrases never enter the order flow
  15  early cancel   "không", "hủy", ... leading a message while in a flow
  20  direct         primary order verbs (0.95), shipping-adjacent verbs (0.75)
  30  contextual     affirmative phrases, gated on cart / flow
  40  confirmation   cancellation anywhere, positive confirmation when asked
  50  flow-specific  payment / address ordinals, summary, status

The classifier never raises; anything unmatched is NO_ORDER with 0.0.
"""

import re
import unicodedata
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Pattern

from app_config import MAX_ADDRESS_OPTIONS
from chat_logger import get_logger, sanitize_log_string
from models import IntentContext, IntentResult, OrderInfo, OrderIntent, PaymentMethod

logger = get_logger("order_chat")


# ═══════════════════════════════════════════
# VOCABULARY
# ═══════════════════════════════════════════

CART_OPERATION_KEYWORDS = [
    "xóa", "xoá", "remove", "delete", "clear", "xóa khỏi", "bỏ ra", "lấy ra",
    "loại bỏ", "bỏ khỏi", "xóa sản phẩm", "xóa toàn bộ", "xóa tất cả",
    "clear cart", "empty cart",
]

CART_VIEW_KEYWORDS = [
    "xem giỏ hàng", "kiểm tra giỏ", "check cart", "show cart",
    "giỏ hàng của tôi", "my cart", "view cart",
]

PRIMARY_ORDER_KEYWORDS = [
    "đặt hàng", "đặt mua", "đặt", "mua hàng", "mua ngay", "mua", "order",
    "checkout", "thanh toán", "đặt đơn", "đặt hàng ngay", "buy now",
]

SECONDARY_ORDER_KEYWORDS = [
    "giao hàng", "delivery", "ship", "shipping", "vận chuyển", "thanh toán cod",
    "thanh toán vnpay", "địa chỉ giao hàng", "giao về", "giao đến",
]

CONTEXTUAL_PHRASES = [
    "tất cả sản phẩm", "hoàn tất", "xác nhận", "confirm", "tiếp tục",
    "proceed", "next step", "bước tiếp theo",
]

CONFIRMATION_KEYWORDS = [
    "có", "yes", "ok", "okay", "được", "đồng ý", "agree", "xác nhận",
    "confirm", "chắc chắn", "sure",
]

CANCEL_KEYWORDS = [
    "không", "no", "hủy", "huỷ", "cancel", "dừng", "stop", "thôi", "quit",
    "exit", "từ chối", "refuse",
]

COD_KEYWORDS = ["cod", "cash on delivery", "tiền mặt", "thanh toán khi nhận"]
ONLINE_KEYWORDS = ["vnpay", "atm", "thẻ", "online", "chuyển khoản", "bank"]

ADDRESS_KEYWORDS = ["địa chỉ", "address", "giao đến", "ship to", "delivery address"]
SUMMARY_KEYWORDS = ["tóm tắt", "summary", "xem đơn", "review", "check order"]
STATUS_KEYWORDS = ["trạng thái", "status", "theo dõi", "track", "kiểm tra đơn"]

PAYMENT_ORDINALS = {"1": PaymentMethod.COD, "2": PaymentMethod.ONLINE}


# ═══════════════════════════════════════════
# TEXT HELPERS
# ═══════════════════════════════════════════

_NON_WORD_RE = re.compile(r"[^\w\s]")
_SPACES_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace; diacritics are kept."""
    if not text:
        return ""
    text = unicodedata.normalize("NFC", text).lower().strip()
    text = _NON_WORD_RE.sub(" ", text)
    return _SPACES_RE.sub(" ", text).strip()


def _phrase_pattern(phrases: Iterable[str]) -> Pattern:
    # Longest first so "đặt hàng ngay" wins over "đặt"
    ordered = sorted({normalize_text(p) for p in phrases}, key=len, reverse=True)
    alternation = "|".join(re.escape(p) for p in ordered)
    return re.compile(rf"(?<!\w)(?:{alternation})(?!\w)")


CART_OPERATION_RE = _phrase_pattern(CART_OPERATION_KEYWORDS)
CART_VIEW_RE = _phrase_pattern(CART_VIEW_KEYWORDS)
PRIMARY_RE = _phrase_pattern(PRIMARY_ORDER_KEYWORDS)
SECONDARY_RE = _phrase_pattern(SECONDARY_ORDER_KEYWORDS)
CONTEXTUAL_RE = _phrase_pattern(CONTEXTUAL_PHRASES)
CONFIRMATION_RE = _phrase_pattern(CONFIRMATION_KEYWORDS)
CANCEL_RE = _phrase_pattern(CANCEL_KEYWORDS)
COD_RE = _phrase_pattern(COD_KEYWORDS)
ONLINE_RE = _phrase_pattern(ONLINE_KEYWORDS)
ADDRESS_RE = _phrase_pattern(ADDRESS_KEYWORDS)
SUMMARY_RE = _phrase_pattern(SUMMARY_KEYWORDS)
STATUS_RE = _phrase_pattern(STATUS_KEYWORDS)
NUMBER_RE = re.compile(r"\d+")

_CANCEL_NORMALIZED = sorted({normalize_text(k) for k in CANCEL_KEYWORDS}, key=len, reverse=True)
_AFFIRMATIVE_TOKENS = {normalize_text(k) for k in CONFIRMATION_KEYWORDS}


def _search(pattern: Pattern, text: str) -> Optional[str]:
    m = pattern.search(text)
    return m.group(0) if m else None


def _leading_cancel(text: str) -> Optional[str]:
    for kw in _CANCEL_NORMALIZED:
        if text == kw or text.startswith(kw + " "):
            return kw
    return None


def _edge_cancel(text: str) -> Optional[str]:
    """Cancel keyword that is the whole message, or opens or closes it."""
    for kw in _CANCEL_NORMALIZED:
        if text == kw or text.startswith(kw + " ") or text.endswith(" " + kw):
            return kw
    return None


def detect_payment_method(text: str) -> Optional[PaymentMethod]:
    """Payment method named by a (normalized) message, if any."""
    if text in PAYMENT_ORDINALS:
        return PAYMENT_ORDINALS[text]
    if COD_RE.search(text):
        return PaymentMethod.COD
    if ONLINE_RE.search(text):
        return PaymentMethod.ONLINE
    return None


def _address_ordinal(text: str) -> Optional[int]:
    if text.isdigit():
        value = int(text)
        if 1 <= value <= MAX_ADDRESS_OPTIONS:
            return value
    return None


def _first_number(text: str) -> Optional[int]:
    match = NUMBER_RE.search(text)
    return int(match.group()) if match else None


# ═══════════════════════════════════════════
# RULE PREDICATES
# ═══════════════════════════════════════════

def _awaiting_answer(ctx: IntentContext) -> bool:
    return ctx.needs_address_selection or ctx.needs_payment_selection or ctx.needs_confirmation


def _match_cart_operation(text, ctx):
    return _search(CART_OPERATION_RE, text)


def _match_cart_view(text, ctx):
    return _search(CART_VIEW_RE, text)


def _match_early_cancel(text, ctx):
    if not ctx.is_in_flow:
        return None
    return _leading_cancel(text)


def _match_primary(text, ctx):
    if _awaiting_answer(ctx):
        return None
    return _search(PRIMARY_RE, text)


def _match_secondary(text, ctx):
    if _awaiting_answer(ctx):
        return None
    return _search(SECONDARY_RE, text)


def _match_contextual_in_flow(text, ctx):
    if not (ctx.has_cart_items and ctx.is_in_flow):
        return None
    return _search(CONTEXTUAL_RE, text)


def _match_contextual(text, ctx):
    if not ctx.has_cart_items:
        return None
    return _search(CONTEXTUAL_RE, text)


def _match_bare_affirmative(text, ctx):
    # A pending summary is answered by the confirmation tier instead
    if not ctx.is_in_flow or ctx.needs_confirmation:
        return None
    return text if text in _AFFIRMATIVE_TOKENS else None


def _match_cancellation(text, ctx):
    return _edge_cancel(text)


def _match_positive_confirmation(text, ctx):
    if not ctx.needs_confirmation:
        return None
    return _search(CONFIRMATION_RE, text)


def _match_payment(text, ctx):
    if not ctx.needs_payment_selection:
        return None
    if text in PAYMENT_ORDINALS:
        return text
    return _search(COD_RE, text) or _search(ONLINE_RE, text)


def _match_address_ordinal(text, ctx):
    if not ctx.needs_address_selection:
        return None
    return text if _address_ordinal(text) is not None else None


def _match_address_keyword(text, ctx):
    if not ctx.needs_address_selection:
        return None
    return _search(ADDRESS_RE, text)


def _match_summary(text, ctx):
    if not ctx.is_in_flow:
        return None
    return _search(SUMMARY_RE, text)


def _match_status(text, ctx):
    if not ctx.is_in_flow:
        return None
    return _search(STATUS_RE, text)


# ═══════════════════════════════════════════
# RULE TABLE
# ═══════════════════════════════════════════

@dataclass(frozen=True)
class IntentRule:
    priority: int
    name: str
    predicate: Callable[[str, IntentContext], Optional[str]]
    intent: OrderIntent
    confidence: float

    def apply(self, text: str, ctx: IntentContext) -> Optional[IntentResult]:
        matched = self.predicate(text, ctx)
        if matched is None:
            return None
        return IntentResult(
            intent=self.intent,
            confidence=self.confidence,
            trigger=self.intent != OrderIntent.NO_ORDER,
            reason=f"{self.name}: '{matched}'",
        )


ORDER_RULES: List[IntentRule] = sorted([
    IntentRule(10, "cart_operation", _match_cart_operation, OrderIntent.NO_ORDER, 0.0),
    IntentRule(11, "cart_view", _match_cart_view, OrderIntent.NO_ORDER, 0.0),
    IntentRule(15, "early_cancellation", _match_early_cancel, OrderIntent.ORDER_CANCELLATION, 0.95),
    IntentRule(20, "primary_keyword", _match_primary, OrderIntent.ORDER_REQUEST, 0.95),
    IntentRule(21, "secondary_keyword", _match_secondary, OrderIntent.ORDER_CONTEXT, 0.75),
    IntentRule(30, "contextual_in_flow", _match_contextual_in_flow, OrderIntent.ORDER_CONFIRMATION, 0.85),
    IntentRule(31, "contextual_with_cart", _match_contextual, OrderIntent.ORDER_CONTEXT, 0.75),
    IntentRule(32, "bare_affirmative", _match_bare_affirmative, OrderIntent.ORDER_CONFIRMATION, 0.85),
    IntentRule(40, "cancellation", _match_cancellation, OrderIntent.ORDER_CANCELLATION, 0.95),
    IntentRule(41, "positive_confirmation", _match_positive_confirmation, OrderIntent.ORDER_CONFIRMATION, 0.90),
    IntentRule(50, "payment_selection", _match_payment, OrderIntent.PAYMENT_SELECTION, 0.95),
    IntentRule(51, "address_ordinal", _match_address_ordinal, OrderIntent.ADDRESS_SELECTION, 0.95),
    IntentRule(52, "address_keyword", _match_address_keyword, OrderIntent.ADDRESS_SELECTION, 0.80),
    IntentRule(53, "order_summary", _match_summary, OrderIntent.ORDER_SUMMARY, 0.85),
    IntentRule(54, "order_status", _match_status, OrderIntent.ORDER_STATUS, 0.85),
], key=lambda rule: rule.priority)


def classify_order_intent(
    message: str,
    context: Optional[IntentContext] = None,
    rules: Optional[List[IntentRule]] = None,
) -> IntentResult:
    """
    Classify a message into an order intent.

    Args:
        message: Raw user text
        context: Flow context derived from the session (defaults to IDLE, empty cart)
        rules: Rule table override, mainly for tests

    Returns:
        IntentResult of the first matching rule, or NO_ORDER.
    """
    context = context or IntentContext()
    try:
        text = normalize_text(message)
        if not text:
            return IntentResult.no_order("empty message")
        for rule in rules if rules is not None else ORDER_RULES:
            result = rule.apply(text, context)
            if result is not None:
                return result
        return IntentResult.no_order()
    except Exception:
        logger.exception(f"[Classifier] failed on message: {sanitize_log_string(str(message))}")
        return IntentResult.no_order("classifier error")


def extract_order_info(message: str) -> OrderInfo:
    """Pull payment choice, address ordinal and yes/no answer out of a message."""
    text = normalize_text(message)
    has_positive = CONFIRMATION_RE.search(text) is not None
    has_negative = CANCEL_RE.search(text) is not None

    confirmation = None
    if has_positive and not has_negative:
        confirmation = True
    elif has_negative and not has_positive:
        confirmation = False

    return OrderInfo(
        payment_method=detect_payment_method(text),
        address_selection=_first_number(text),
        confirmation=confirmation,
    )


class OrderIntentClassifier:
    """Rule-based intent strategy used by the order flow engine."""

    def __init__(self, rules: Optional[List[IntentRule]] = None):
        self.rules = sorted(rules, key=lambda r: r.priority) if rules is not None else ORDER_RULES

    def classify(self, message: str, context: Optional[IntentContext] = None) -> IntentResult:
        return classify_order_intent(message, context, self.rules)
