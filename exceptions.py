"""
Error taxonomy for the order flow.

Every error raised inside a handler is converted into a structured Response
at the engine boundary; nothing escapes ``OrderFlowEngine.handle``.
"""

from typing import List, Optional


class OrderFlowError(Exception):
    """Base class for expected order-flow failures."""

    fatal = False


class AuthenticationRequired(OrderFlowError):
    """No user is bound to the session."""


class EmptyCart(OrderFlowError):
    """The user's cart has no lines to order."""


class AddressMissing(OrderFlowError):
    """No shipping address is known or selected."""


class PaymentMethodMissing(OrderFlowError):
    """A summary was requested before a payment method was chosen."""


class StockConflict(OrderFlowError):
    """Final re-validation found lines that cannot be fulfilled."""

    def __init__(self, conflicts: List[dict]):
        self.conflicts = conflicts
        names = ", ".join(f"{c['name']} (còn {c['available']})" for c in conflicts)
        super().__init__(f"Stock conflict: {names}")


class ShippingCalculationFailed(OrderFlowError):
    """The shipping-fee collaborator failed; recovered with the fallback fee."""


class PersistenceError(OrderFlowError):
    """The order store could not persist the order."""

    fatal = True


class UnrecognizedInput(OrderFlowError):
    """Message did not map to an action in the current state."""


class InvalidTransition(OrderFlowError):
    """A state change not present in the transition table was attempted."""

    fatal = True

    def __init__(self, from_state, to_state):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Illegal transition {from_state.value} -> {to_state.value}")


class SessionBusy(OrderFlowError):
    """Another message for the same session is still being processed."""

    def __init__(self, session_id: str, message: Optional[str] = None):
        self.session_id = session_id
        super().__init__(message or f"Session {session_id} is locked")
