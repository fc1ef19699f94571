"""
Order Flow State Machine tables.

  TRANSITIONS  - every legal state change; anything else raises InvalidTransition
  DISPATCH     - (state, intent) -> Action, plus intents honoured in any state
  derive_intent_context() - the classifier's view of a session
"""

from typing import Dict, FrozenSet, Optional, Tuple

from chat_logger import get_logger, mask_identifier
from exceptions import InvalidTransition
from models import Action, FlowState, IntentContext, OrderIntent, Session

logger = get_logger("order_chat")

S = FlowState
I = OrderIntent

# ═══════════════════════════════════════════
# TRANSITION TABLE
# ═══════════════════════════════════════════

# Any state may also move to ERROR_STATE when a turn fails.
TRANSITIONS: Dict[FlowState, FrozenSet[FlowState]] = {
    S.IDLE:                frozenset({S.ORDER_INITIATED}),
    S.ORDER_INITIATED:     frozenset({S.CART_VALIDATED, S.IDLE}),
    S.CART_VALIDATED:      frozenset({S.ADDRESS_SELECTION, S.ADDRESS_SELECTED, S.ORDER_INITIATED, S.IDLE}),
    S.ADDRESS_SELECTION:   frozenset({S.ADDRESS_SELECTED, S.IDLE}),
    S.ADDRESS_SELECTED:    frozenset({S.SHIPPING_CALCULATED, S.IDLE}),
    S.SHIPPING_CALCULATED: frozenset({S.PAYMENT_SELECTION, S.IDLE}),
    S.PAYMENT_SELECTION:   frozenset({S.PAYMENT_SELECTED, S.IDLE}),
    S.PAYMENT_SELECTED:    frozenset({S.SUMMARY_SHOWN, S.IDLE}),
    S.SUMMARY_SHOWN:       frozenset({S.ORDER_CREATED, S.IDLE}),
    S.ORDER_CREATED:       frozenset({S.IDLE, S.ORDER_INITIATED}),
    S.ERROR_STATE:         frozenset({S.ORDER_INITIATED, S.IDLE}),
}


def can_transition(from_state: FlowState, to_state: FlowState) -> bool:
    if to_state == S.ERROR_STATE:
        return True
    return to_state in TRANSITIONS.get(from_state, frozenset())


def transition(session: Session, to_state: FlowState, now: float) -> None:
    """Move ``session`` to ``to_state`` or raise InvalidTransition."""
    from_state = session.state
    if not can_transition(from_state, to_state):
        raise InvalidTransition(from_state, to_state)
    session.state = to_state
    session.state_changed_at = now
    logger.info(
        f"[OrderFlow] session {mask_identifier(session.session_id)}: "
        f"{from_state.value} -> {to_state.value}"
    )


# ═══════════════════════════════════════════
# DISPATCH TABLE
# ═══════════════════════════════════════════

DISPATCH: Dict[Tuple[FlowState, OrderIntent], Action] = {
    (S.IDLE, I.ORDER_REQUEST):                    Action.INITIATE_ORDER,
    (S.IDLE, I.ORDER_CONTEXT):                    Action.INITIATE_ORDER,
    (S.CART_VALIDATED, I.ORDER_REQUEST):          Action.INITIATE_ORDER,
    (S.ERROR_STATE, I.ORDER_REQUEST):             Action.INITIATE_ORDER,
    (S.ORDER_CREATED, I.ORDER_REQUEST):           Action.INITIATE_ORDER,

    (S.CART_VALIDATED, I.ORDER_CONFIRMATION):     Action.RESOLVE_ADDRESS,
    (S.CART_VALIDATED, I.ORDER_CONTEXT):          Action.RESOLVE_ADDRESS,

    (S.ADDRESS_SELECTION, I.ADDRESS_SELECTION):   Action.SELECT_ADDRESS,
    (S.ADDRESS_SELECTION, I.ORDER_CONFIRMATION):  Action.SELECT_ADDRESS,

    (S.PAYMENT_SELECTION, I.PAYMENT_SELECTION):   Action.SELECT_PAYMENT,
    (S.PAYMENT_SELECTION, I.ORDER_CONFIRMATION):  Action.SELECT_PAYMENT,

    (S.SUMMARY_SHOWN, I.ORDER_CONFIRMATION):      Action.CONFIRM_ORDER,
    (S.SUMMARY_SHOWN, I.ORDER_SUMMARY):           Action.SHOW_SUMMARY,

    # Repeated "có" after the order exists returns it instead of committing again
    (S.ORDER_CREATED, I.ORDER_CONFIRMATION):      Action.CONFIRM_ORDER,
}

ANY_STATE_DISPATCH: Dict[OrderIntent, Action] = {
    I.ORDER_CANCELLATION: Action.CANCEL_ORDER,
    I.ORDER_STATUS:       Action.CHECK_STATUS,
}


def resolve_action(state: FlowState, intent: OrderIntent) -> Action:
    """Action for an intent in a state; unlisted pairs get guidance."""
    if intent in ANY_STATE_DISPATCH:
        return ANY_STATE_DISPATCH[intent]
    return DISPATCH.get((state, intent), Action.GUIDANCE)


# ═══════════════════════════════════════════
# CLASSIFIER CONTEXT
# ═══════════════════════════════════════════

_CONTEXT_OVERRIDES = (
    "is_in_flow",
    "has_cart_items",
    "needs_address_selection",
    "needs_payment_selection",
    "needs_confirmation",
)


def derive_intent_context(
    session: Session,
    has_cart_items: bool,
    overrides: Optional[dict] = None,
) -> IntentContext:
    """
    Build the classifier context from the session state.
    Boolean flags present in ``overrides`` (the caller's context map) win.
    """
    ctx = IntentContext(
        is_in_flow=session.state != S.IDLE,
        current_state=session.state,
        has_cart_items=has_cart_items,
        needs_address_selection=session.state == S.ADDRESS_SELECTION,
        needs_payment_selection=session.state == S.PAYMENT_SELECTION,
        needs_confirmation=session.state == S.SUMMARY_SHOWN,
    )
    for key in _CONTEXT_OVERRIDES:
        if overrides and isinstance(overrides.get(key), bool):
            setattr(ctx, key, overrides[key])
    return ctx
