"""
Tests for the order intent classifier.

Covers each rule tier in priority order:
- Text normalization
- Exclusion of cart-management phrases
- Direct keyword tiers (primary / secondary)
- Contextual affirmatives gated on cart and flow
- Confirmation tier (cancellation anywhere, confirmation only when asked)
- Flow-specific tier (payment, address ordinals, summary, status)
- Rule table ordering and the never-raise contract
"""

import pytest

from intent_classifier import (
    ORDER_RULES,
    IntentRule,
    OrderIntentClassifier,
    classify_order_intent,
    detect_payment_method,
    extract_order_info,
    normalize_text,
)
from models import FlowState, IntentContext, OrderIntent, PaymentMethod


def ctx_for(state: FlowState, has_cart: bool = True) -> IntentContext:
    return IntentContext(
        is_in_flow=state != FlowState.IDLE,
        current_state=state,
        has_cart_items=has_cart,
        needs_address_selection=state == FlowState.ADDRESS_SELECTION,
        needs_payment_selection=state == FlowState.PAYMENT_SELECTION,
        needs_confirmation=state == FlowState.SUMMARY_SHOWN,
    )


IDLE = ctx_for(FlowState.IDLE, has_cart=False)
IDLE_WITH_CART = ctx_for(FlowState.IDLE)


# ═══════════════════════════════════════════════════════════════
#  A. Normalization
# ═══════════════════════════════════════════════════════════════

class TestNormalizeText:

    def test_lowercases_and_strips_punctuation(self):
        assert normalize_text("  ĐẶT HÀNG!!! ") == "đặt hàng"

    def test_keeps_vietnamese_diacritics(self):
        assert normalize_text("Xác nhận, đồng ý.") == "xác nhận đồng ý"

    def test_collapses_whitespace(self):
        assert normalize_text("mua \t\n  ngay") == "mua ngay"

    def test_decomposed_unicode_is_composed(self):
        decomposed = "co\u0301"  # o + combining acute
        assert normalize_text(decomposed) == "có"

    def test_empty_input(self):
        assert normalize_text("") == ""
        assert normalize_text(None) == ""


# ═══════════════════════════════════════════════════════════════
#  B. Exclusion tier
# ═══════════════════════════════════════════════════════════════

class TestExclusion:
    """Cart-management requests must never be pulled into the order flow."""

    def test_cart_mutation_phrases_are_not_orders(self):
        for phrase in ["xóa sản phẩm khỏi giỏ", "remove the mouse", "clear cart", "bỏ ra cái chuột"]:
            result = classify_order_intent(phrase, IDLE_WITH_CART)
            assert result.intent == OrderIntent.NO_ORDER, f"Failed for: {phrase}"
            assert result.trigger is False
            assert result.confidence == 0.0

    def test_exclusion_beats_order_verb(self):
        result = classify_order_intent("xóa sản phẩm rồi đặt hàng", IDLE_WITH_CART)
        assert result.intent == OrderIntent.NO_ORDER
        assert result.reason.startswith("cart_operation")

    def test_view_cart_is_not_an_order(self):
        for phrase in ["xem giỏ hàng", "show cart", "giỏ hàng của tôi"]:
            result = classify_order_intent(phrase, IDLE_WITH_CART)
            assert result.intent == OrderIntent.NO_ORDER, f"Failed for: {phrase}"


# ═══════════════════════════════════════════════════════════════
#  C. Direct keyword tiers
# ═══════════════════════════════════════════════════════════════

class TestDirectKeywords:

    def test_primary_verbs_are_order_requests(self):
        for phrase in ["đặt hàng", "Mua ngay", "checkout", "tôi muốn thanh toán", "buy now"]:
            result = classify_order_intent(phrase, IDLE)
            assert result.intent == OrderIntent.ORDER_REQUEST, f"Failed for: {phrase}"
            assert result.confidence == 0.95
            assert result.trigger is True

    def test_secondary_verbs_are_order_context(self):
        for phrase in ["giao hàng bao lâu", "phí vận chuyển", "shipping"]:
            result = classify_order_intent(phrase, IDLE)
            assert result.intent == OrderIntent.ORDER_CONTEXT, f"Failed for: {phrase}"
            assert result.confidence == 0.75

    def test_keywords_match_whole_words_only(self):
        # "order" inside "recorder" must not fire
        result = classify_order_intent("recorder", IDLE)
        assert result.intent == OrderIntent.NO_ORDER

    def test_direct_tier_suspended_while_waiting_for_answer(self):
        result = classify_order_intent("thanh toán cod", ctx_for(FlowState.PAYMENT_SELECTION))
        assert result.intent == OrderIntent.PAYMENT_SELECTION


# ═══════════════════════════════════════════════════════════════
#  D. Contextual tier
# ═══════════════════════════════════════════════════════════════

class TestContextual:

    def test_affirmative_phrase_ignored_without_cart(self):
        result = classify_order_intent("tiếp tục", IDLE)
        assert result.intent == OrderIntent.NO_ORDER

    def test_affirmative_phrase_with_cart_is_order_context(self):
        result = classify_order_intent("tiếp tục", IDLE_WITH_CART)
        assert result.intent == OrderIntent.ORDER_CONTEXT
        assert result.confidence == 0.75

    def test_affirmative_phrase_in_flow_is_confirmation(self):
        result = classify_order_intent("tiếp tục", ctx_for(FlowState.CART_VALIDATED))
        assert result.intent == OrderIntent.ORDER_CONFIRMATION
        assert result.confidence == 0.85

    def test_bare_yes_outside_flow_ignored(self):
        for token in ["có", "ok", "yes"]:
            result = classify_order_intent(token, IDLE_WITH_CART)
            assert result.intent == OrderIntent.NO_ORDER, f"Failed for: {token}"

    def test_bare_yes_in_flow_is_confirmation(self):
        for token in ["có", "ok", "Yes", "đồng ý"]:
            result = classify_order_intent(token, ctx_for(FlowState.CART_VALIDATED))
            assert result.intent == OrderIntent.ORDER_CONFIRMATION, f"Failed for: {token}"
            assert result.confidence == 0.85


# ═══════════════════════════════════════════════════════════════
#  E. Confirmation tier
# ═══════════════════════════════════════════════════════════════

class TestConfirmationTier:

    def test_cancellation_wins_in_any_flow_state(self):
        for state in [FlowState.CART_VALIDATED, FlowState.ADDRESS_SELECTION,
                      FlowState.PAYMENT_SELECTION, FlowState.SUMMARY_SHOWN]:
            for phrase in ["không", "hủy", "cancel", "thôi không mua nữa"]:
                result = classify_order_intent(phrase, ctx_for(state))
                assert result.intent == OrderIntent.ORDER_CANCELLATION, f"Failed for: {phrase} in {state}"
                assert result.confidence == 0.95

    def test_cancellation_recognised_outside_confirmation_context(self):
        result = classify_order_intent("hủy", IDLE)
        assert result.intent == OrderIntent.ORDER_CANCELLATION

    def test_cancel_keyword_at_end_of_message(self):
        result = classify_order_intent("tôi muốn dừng", IDLE)
        assert result.intent == OrderIntent.ORDER_CANCELLATION

    def test_positive_confirmation_when_summary_pending(self):
        for phrase in ["có", "Có!", "xác nhận", "ok luôn"]:
            result = classify_order_intent(phrase, ctx_for(FlowState.SUMMARY_SHOWN))
            assert result.intent == OrderIntent.ORDER_CONFIRMATION, f"Failed for: {phrase}"

    def test_bare_yes_on_summary_uses_confirmation_confidence(self):
        result = classify_order_intent("có", ctx_for(FlowState.SUMMARY_SHOWN))
        assert result.confidence == 0.90
        assert result.reason.startswith("positive_confirmation")

    def test_summary_ignores_new_order_verbs(self):
        result = classify_order_intent("đặt hàng", ctx_for(FlowState.SUMMARY_SHOWN))
        assert result.intent != OrderIntent.ORDER_REQUEST


# ═══════════════════════════════════════════════════════════════
#  F. Flow-specific tier
# ═══════════════════════════════════════════════════════════════

class TestFlowSpecific:

    def test_numeric_is_address_ordinal_only_when_selecting_address(self):
        result = classify_order_intent("2", ctx_for(FlowState.ADDRESS_SELECTION))
        assert result.intent == OrderIntent.ADDRESS_SELECTION
        assert result.confidence == 0.95

        assert classify_order_intent("2", IDLE).intent == OrderIntent.NO_ORDER
        assert classify_order_intent("2", ctx_for(FlowState.CART_VALIDATED)).intent == OrderIntent.NO_ORDER

    def test_address_ordinal_out_of_range(self):
        result = classify_order_intent("11", ctx_for(FlowState.ADDRESS_SELECTION))
        assert result.intent == OrderIntent.NO_ORDER

    def test_address_keyword(self):
        result = classify_order_intent("dùng địa chỉ mặc định", ctx_for(FlowState.ADDRESS_SELECTION))
        assert result.intent == OrderIntent.ADDRESS_SELECTION
        assert result.confidence == 0.80

    def test_payment_keywords_and_ordinals(self):
        ctx = ctx_for(FlowState.PAYMENT_SELECTION)
        for phrase in ["COD", "1", "2", "vnpay", "chuyển khoản", "tiền mặt"]:
            result = classify_order_intent(phrase, ctx)
            assert result.intent == OrderIntent.PAYMENT_SELECTION, f"Failed for: {phrase}"
            assert result.confidence == 0.95

    def test_payment_keyword_ignored_outside_payment_step(self):
        assert classify_order_intent("cod", ctx_for(FlowState.ADDRESS_SELECTION)).intent == OrderIntent.NO_ORDER

    def test_summary_and_status_keywords_in_flow(self):
        ctx = ctx_for(FlowState.SUMMARY_SHOWN)
        assert classify_order_intent("xem đơn", ctx).intent == OrderIntent.ORDER_SUMMARY
        assert classify_order_intent("trạng thái", ctx).intent == OrderIntent.ORDER_STATUS
        assert classify_order_intent("trạng thái", IDLE).intent == OrderIntent.NO_ORDER


# ═══════════════════════════════════════════════════════════════
#  G. Rule table, extraction, robustness
# ═══════════════════════════════════════════════════════════════

class TestRuleTable:

    def test_rules_sorted_by_priority(self):
        priorities = [rule.priority for rule in ORDER_RULES]
        assert priorities == sorted(priorities)

    def test_each_rule_is_independently_testable(self):
        rule = next(r for r in ORDER_RULES if r.name == "payment_selection")
        assert rule.apply("cod", ctx_for(FlowState.PAYMENT_SELECTION)).intent == OrderIntent.PAYMENT_SELECTION
        assert rule.apply("cod", IDLE) is None

    def test_custom_rule_table(self):
        rules = [IntentRule(1, "always", lambda text, ctx: text, OrderIntent.ORDER_STATUS, 0.5)]
        result = OrderIntentClassifier(rules).classify("anything", IDLE)
        assert result.intent == OrderIntent.ORDER_STATUS
        assert result.confidence == 0.5

    def test_unmatched_input(self):
        result = classify_order_intent("thời tiết hôm nay thế nào", IDLE)
        assert (result.intent, result.confidence, result.trigger) == (OrderIntent.NO_ORDER, 0.0, False)

    def test_never_raises(self):
        def boom(text, ctx):
            raise RuntimeError("broken predicate")

        rules = [IntentRule(1, "boom", boom, OrderIntent.ORDER_REQUEST, 1.0)]
        result = classify_order_intent("đặt hàng", IDLE, rules)
        assert result.intent == OrderIntent.NO_ORDER

    def test_non_string_input(self):
        assert classify_order_intent(None, IDLE).intent == OrderIntent.NO_ORDER


class TestExtractOrderInfo:

    def test_payment_detection(self):
        assert detect_payment_method("cod") == PaymentMethod.COD
        assert detect_payment_method("1") == PaymentMethod.COD
        assert detect_payment_method("2") == PaymentMethod.ONLINE
        assert detect_payment_method("vnpay") == PaymentMethod.ONLINE
        assert detect_payment_method("xin chào") is None

    def test_confirmation_polarity(self):
        assert extract_order_info("Có").confirmation is True
        assert extract_order_info("không").confirmation is False
        assert extract_order_info("không đồng ý").confirmation is None
        assert extract_order_info("hoàn tất").confirmation is None

    def test_address_selection(self):
        assert extract_order_info("3").address_selection == 3
        assert extract_order_info("số 3").address_selection == 3
        assert extract_order_info("địa chỉ 2 nhé").address_selection == 2
        assert extract_order_info("0").address_selection == 0
        assert extract_order_info("địa chỉ mặc định").address_selection is None
