"""
Order Flow Engine
=================
Drives a chat session from "đặt hàng" to a persisted order.

    message ─► load session (grace reset) ─► classify ─► (state, intent) → Action
            ─► action handler (validator / shipping / checkout) ─► save session
            ─► Response

All work for one session runs under ``session_store.lock(session_id)``, so
two messages for the same conversation are processed one after the other.
``handle`` never raises: expected failures become guidance responses,
anything else moves the session to ERROR_STATE.
"""

import copy
import time
from typing import Callable, Optional

from app_config import (
    MAX_ADDRESS_OPTIONS,
    MAX_HISTORY_TURNS,
    ORDER_RESET_GRACE_SECONDS,
    RECENT_ORDERS_LIMIT,
    SERVICE_FEE,
)
from chat_logger import get_logger, mask_identifier, sanitize_log_string
from conversation_flow import derive_intent_context, resolve_action, transition
from core.helpers import resolve_user_id
from exceptions import (
    AddressMissing,
    AuthenticationRequired,
    EmptyCart,
    OrderFlowError,
    PaymentMethodMissing,
    PersistenceError,
    SessionBusy,
    ShippingCalculationFailed,
    StockConflict,
    UnrecognizedInput,
)
from intent_classifier import OrderIntentClassifier, extract_order_info
from inventory_validator import InventoryValidator
from models import (
    Action,
    FlowState,
    HistoryEntry,
    IntentResult,
    OrderContext,
    OrderIntent,
    Response,
    Session,
    ShippingInfo,
)
from services import bot_message
from services.order_service import CheckoutService
from services.shipping_service import ShippingCalculator

logger = get_logger("order_chat")


class OrderFlowEngine:
    """
    Conversational checkout state machine.

    Collaborators are injected so the same engine runs against the in-memory
    stores (dev server, tests) or real database/carrier clients.
    """

    def __init__(
        self,
        session_store,
        cart_store,
        product_store,
        user_store,
        order_store,
        shipping_calculator: Optional[ShippingCalculator] = None,
        classifier=None,
        clock: Callable[[], float] = time.time,
        service_fee: int = SERVICE_FEE,
        grace_seconds: float = ORDER_RESET_GRACE_SECONDS,
        max_history: int = MAX_HISTORY_TURNS,
    ):
        self.sessions = session_store
        self.carts = cart_store
        self.products = product_store
        self.users = user_store
        self.orders = order_store
        self.shipping = shipping_calculator or ShippingCalculator()
        self.classifier = classifier or OrderIntentClassifier()
        self.clock = clock
        self.grace_seconds = grace_seconds
        self.max_history = max_history

        self.validator = InventoryValidator(product_store)
        self.checkout = CheckoutService(cart_store, product_store, order_store, self.validator, service_fee)

        self._actions = {
            Action.INITIATE_ORDER:  self._initiate_order,
            Action.RESOLVE_ADDRESS: self._resolve_address,
            Action.SELECT_ADDRESS:  self._select_address,
            Action.SELECT_PAYMENT:  self._select_payment,
            Action.SHOW_SUMMARY:    self._show_summary,
            Action.CONFIRM_ORDER:   self._confirm_order,
            Action.CANCEL_ORDER:    self._cancel_order,
            Action.CHECK_STATUS:    self._check_status,
            Action.GUIDANCE:        self._guidance,
        }

    # ═══════════════════════════════════════════
    # ENTRY POINT
    # ═══════════════════════════════════════════

    def handle(self, message: str, session_id: str, context: Optional[dict] = None) -> Response:
        """
        Process one chat message for ``session_id``.

        Args:
            message: Raw user text
            session_id: Conversation key
            context: Caller context; ``user_id`` binds the shopper, boolean
                     classifier flags (``has_cart_items`` ...) override derived ones

        Returns:
            Response describing the outcome and the next expected step.
        """
        context = context or {}
        try:
            with self.sessions.lock(session_id):
                return self._handle_locked(message or "", session_id, context)
        except SessionBusy:
            logger.warning(f"[OrderFlow] session {mask_identifier(session_id)} busy, message rejected")
            return Response(success=False, message=bot_message.session_busy_message(), next_step="retry")
        except Exception:
            # Session could not be loaded or saved; nothing was persisted for this turn
            logger.exception(f"[OrderFlow] unrecoverable error for session {mask_identifier(session_id)}")
            return Response(success=False, message=bot_message.processing_error_message(), next_step="retry")

    def _handle_locked(self, message: str, session_id: str, context: dict) -> Response:
        now = self.clock()
        session = self.load_session(session_id, now)
        user_id = resolve_user_id(context) or session.user_id
        session.user_id = user_id

        try:
            response = self._process(session, message, user_id, context)
        except PersistenceError as e:
            session.error_count += 1
            logger.error(f"[OrderFlow] persistence failure in {session.state.value}: {e}")
            response = Response(
                success=False,
                message=bot_message.persistence_error_message(),
                next_step="retry",
                **self._state_flags(session),
            )
        except OrderFlowError as e:
            if e.fatal:
                response = self._fail(session, e)
            else:
                response = self._domain_error_response(session, e)
        except Exception as e:
            response = self._fail(session, e)

        response.state = session.state.value
        self._record_turn(session, message, response, now)
        self.sessions.save(session)
        return response

    def _process(self, session: Session, message: str, user_id: Optional[str], context: dict) -> Response:
        has_cart = bool(user_id) and not self.carts.get_by_user(user_id).is_empty
        intent_ctx = derive_intent_context(session, has_cart, context)
        result: IntentResult = self.classifier.classify(message, intent_ctx)
        logger.info(
            f"[OrderFlow] session {mask_identifier(session.session_id)} state={session.state.value} "
            f"intent={result.intent.value} conf={result.confidence:.2f} ({result.reason}) "
            f"msg='{sanitize_log_string(message)}'"
        )

        if result.intent == OrderIntent.NO_ORDER and session.state == FlowState.IDLE:
            return self._tag(Response(
                success=False,
                message=bot_message.guidance_message(FlowState.IDLE),
                order_flow=False,
            ), result)

        # Cancelling never needs a login
        if not user_id and result.trigger and result.intent != OrderIntent.ORDER_CANCELLATION:
            raise AuthenticationRequired("No user bound to session")

        action = resolve_action(session.state, result.intent)
        response = self._actions[action](session, user_id, message, result)
        return self._tag(response, result)

    @staticmethod
    def _tag(response: Response, result: IntentResult) -> Response:
        response.intent = result.intent.value
        response.confidence = result.confidence
        return response

    # ═══════════════════════════════════════════
    # SESSION LIFECYCLE
    # ═══════════════════════════════════════════

    def load_session(self, session_id: str, now: Optional[float] = None) -> Session:
        """Fetch or create a session; ORDER_CREATED past its grace window resets to IDLE."""
        now = self.clock() if now is None else now
        session = self.sessions.get(session_id)
        if session is None:
            logger.info(f"[OrderFlow] new session {mask_identifier(session_id)}")
            return Session(session_id=session_id, last_activity=now, state_changed_at=now)
        if session.state == FlowState.ORDER_CREATED and now - session.state_changed_at >= self.grace_seconds:
            self._reset(session, now)
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        """Read-only view for status endpoints."""
        session = self.sessions.get(session_id)
        if session is not None and session.state == FlowState.ORDER_CREATED:
            if self.clock() - session.state_changed_at >= self.grace_seconds:
                session.state = FlowState.IDLE
                session.order_context = OrderContext()
        return session

    def _transition(self, session: Session, to_state: FlowState) -> None:
        transition(session, to_state, self.clock())

    def _reset(self, session: Session, now: Optional[float] = None) -> None:
        session.order_context = OrderContext()
        if session.state != FlowState.IDLE:
            transition(session, FlowState.IDLE, self.clock() if now is None else now)

    def _record_turn(self, session: Session, message: str, response: Response, now: float) -> None:
        session.history.append(HistoryEntry(
            timestamp=now,
            user_message=message,
            bot_response=response.message,
            state=session.state.value,
            success=response.success,
        ))
        if len(session.history) > self.max_history:
            session.history = session.history[-self.max_history:]
        session.last_activity = now

    # ═══════════════════════════════════════════
    # ACTIONS
    # ═══════════════════════════════════════════

    def _initiate_order(self, session, user_id, message, result) -> Response:
        session.order_context = OrderContext()
        self._transition(session, FlowState.ORDER_INITIATED)

        cart = self.carts.get_by_user(user_id)
        if cart.is_empty:
            self._transition(session, FlowState.IDLE)
            return Response(success=False, message=bot_message.empty_cart_message(), next_step="add_to_cart")

        report = self.validator.validate(cart.lines)
        fix = None
        if report.has_issues:
            fix = self.validator.auto_fix(cart, report)
            self.carts.save(cart)
            if cart.is_empty:
                self._transition(session, FlowState.IDLE)
                return Response(
                    success=False,
                    message=bot_message.auto_fix_message(fix),
                    next_step="add_to_cart",
                )

        session.order_context.cart = copy.deepcopy(cart.lines)
        self._transition(session, FlowState.CART_VALIDATED)
        return Response(
            success=True,
            message=bot_message.cart_summary_message(cart.lines, fix),
            next_step="confirm_cart",
            needs_confirmation=True,
        )

    def _resolve_address(self, session, user_id, message, result) -> Response:
        addresses = self.users.get_addresses(user_id)
        if not addresses:
            single = self.users.get_address(user_id)
            addresses = [single] if single else []
        if not addresses:
            raise AddressMissing(f"User {user_id} has no shipping address")

        ctx = session.order_context
        ctx.address_options = addresses[:MAX_ADDRESS_OPTIONS]
        ctx.selected_address = None
        ctx.shipping = None

        if len(ctx.address_options) == 1:
            ctx.selected_address = ctx.address_options[0]
            self._transition(session, FlowState.ADDRESS_SELECTED)
            return self._after_address_selected(session)

        self._transition(session, FlowState.ADDRESS_SELECTION)
        return Response(
            success=True,
            message=bot_message.address_selection_message(ctx.address_options),
            next_step="select_address",
            needs_address_selection=True,
        )

    def _select_address(self, session, user_id, message, result) -> Response:
        ctx = session.order_context
        options = ctx.address_options
        info = extract_order_info(message)
        index = info.address_selection

        if index is None and (info.confirmation or result.intent == OrderIntent.ADDRESS_SELECTION):
            defaults = [i for i, a in enumerate(options, 1) if a.is_default]
            if defaults:
                index = defaults[0]
            elif len(options) == 1:
                index = 1

        if index is None or not 1 <= index <= len(options):
            raise UnrecognizedInput(f"No address option matches '{message}'")

        ctx.selected_address = options[index - 1]
        ctx.shipping = None
        self._transition(session, FlowState.ADDRESS_SELECTED)
        return self._after_address_selected(session)

    def _after_address_selected(self, session: Session) -> Response:
        shipping = self.calculate_shipping(session)
        self._transition(session, FlowState.PAYMENT_SELECTION)
        ctx = session.order_context
        return Response(
            success=True,
            message=(
                bot_message.shipping_message(shipping, ctx.selected_address)
                + "\n\n"
                + bot_message.payment_selection_message()
            ),
            next_step="select_payment",
            needs_payment_selection=True,
        )

    def calculate_shipping(self, session: Session) -> ShippingInfo:
        """
        Quote shipping for the selected address. Repeated calls return the
        stored quote and leave the state at SHIPPING_CALCULATED.
        """
        ctx = session.order_context
        if session.state == FlowState.SHIPPING_CALCULATED and ctx.shipping is not None:
            return ctx.shipping
        if ctx.selected_address is None:
            raise AddressMissing("Shipping requested before an address was selected")
        if ctx.shipping is None:
            ctx.shipping = self.shipping.calculate(ctx.selected_address, ctx.cart)
            if ctx.shipping.fallback:
                logger.warning(
                    f"[OrderFlow] session {mask_identifier(session.session_id)} "
                    f"uses fallback shipping fee {ctx.shipping.fee}"
                )
        self._transition(session, FlowState.SHIPPING_CALCULATED)
        return ctx.shipping

    def _select_payment(self, session, user_id, message, result) -> Response:
        ctx = session.order_context
        method = extract_order_info(message).payment_method
        if method is None:
            raise UnrecognizedInput(f"No payment method in '{message}'")

        ctx.payment_method = method
        # Raises before any state change if address or shipping is missing
        summary = self.checkout.build_summary(ctx)
        self._transition(session, FlowState.PAYMENT_SELECTED)
        self._transition(session, FlowState.SUMMARY_SHOWN)
        return Response(
            success=True,
            message=bot_message.order_summary_message(
                summary, ctx.selected_address, method, ctx.shipping.estimated_days
            ),
            next_step="confirm_order",
            needs_confirmation=True,
        )

    def _show_summary(self, session, user_id, message, result) -> Response:
        ctx = session.order_context
        summary = self.checkout.build_summary(ctx)
        return Response(
            success=True,
            message=bot_message.order_summary_message(
                summary, ctx.selected_address, ctx.payment_method, ctx.shipping.estimated_days
            ),
            next_step="confirm_order",
            needs_confirmation=True,
        )

    def _confirm_order(self, session, user_id, message, result) -> Response:
        ctx = session.order_context

        if session.state == FlowState.ORDER_CREATED and ctx.created_order is not None:
            logger.info(f"[OrderFlow] duplicate confirmation for order {ctx.created_order.order_number}")
            return Response(
                success=True,
                message=bot_message.order_already_created_message(ctx.created_order),
                order=ctx.created_order.to_dict(),
                completed=True,
                next_step="completed",
            )

        confirmation = extract_order_info(message).confirmation
        if confirmation is False:
            return self._cancel_order(session, user_id, message, result)
        if confirmation is not True:
            return self._guidance(session, user_id, message, result)

        try:
            order = self.checkout.commit(user_id, ctx)
        except StockConflict as e:
            # Summary, address and shipping are kept; "Có" retries against the current cart
            return Response(
                success=False,
                message=bot_message.stock_conflict_message(e.conflicts),
                next_step="review_cart",
                **self._state_flags(session),
            )
        except EmptyCart:
            self._reset(session)
            return Response(success=False, message=bot_message.empty_cart_message(), next_step="add_to_cart")

        ctx.created_order = order
        self._transition(session, FlowState.ORDER_CREATED)
        return Response(
            success=True,
            message=bot_message.order_success_message(order),
            order=order.to_dict(),
            completed=True,
            next_step="completed",
        )

    def _cancel_order(self, session, user_id, message, result) -> Response:
        if session.state == FlowState.IDLE:
            return Response(success=True, message=bot_message.nothing_to_cancel_message(), order_flow=False)

        created = session.order_context.created_order if session.state == FlowState.ORDER_CREATED else None
        self._reset(session)
        if created is not None:
            return Response(
                success=True,
                message=bot_message.order_already_created_message(created),
                order=created.to_dict(),
                completed=True,
            )
        logger.info(f"[OrderFlow] session {mask_identifier(session.session_id)} cancelled checkout")
        return Response(success=True, message=bot_message.cancelled_message(), next_step="cancelled")

    def _check_status(self, session, user_id, message, result) -> Response:
        orders = self.orders.list_by_user(user_id, RECENT_ORDERS_LIMIT)
        return Response(
            success=True,
            message=bot_message.orders_list_message(orders),
            **self._state_flags(session),
        )

    def _guidance(self, session, user_id, message, result) -> Response:
        return Response(
            success=False,
            message=bot_message.guidance_message(session.state, len(session.order_context.address_options)),
            order_flow=session.state != FlowState.IDLE,
            **self._state_flags(session),
        )

    # ═══════════════════════════════════════════
    # ERROR RESPONSES
    # ═══════════════════════════════════════════

    @staticmethod
    def _state_flags(session: Session) -> dict:
        return {
            "needs_address_selection": session.state == FlowState.ADDRESS_SELECTION,
            "needs_payment_selection": session.state == FlowState.PAYMENT_SELECTION,
            "needs_confirmation": session.state in (FlowState.SUMMARY_SHOWN, FlowState.CART_VALIDATED),
        }

    def _domain_error_response(self, session: Session, error: OrderFlowError) -> Response:
        logger.info(f"[OrderFlow] {type(error).__name__} in {session.state.value}: {error}")
        if isinstance(error, AuthenticationRequired):
            return Response(success=False, message=bot_message.login_required_message(), requires_auth=True)
        if isinstance(error, AddressMissing):
            message, next_step = bot_message.address_missing_message(), "add_address"
        elif isinstance(error, PaymentMethodMissing):
            message, next_step = bot_message.payment_missing_message(), "select_payment"
        elif isinstance(error, ShippingCalculationFailed):
            message, next_step = bot_message.shipping_missing_message(), "select_address"
        elif isinstance(error, EmptyCart):
            message, next_step = bot_message.empty_cart_message(), "add_to_cart"
        else:
            message = bot_message.guidance_message(session.state, len(session.order_context.address_options))
            next_step = None
        return Response(
            success=False,
            message=message,
            next_step=next_step,
            order_flow=session.state != FlowState.IDLE,
            **self._state_flags(session),
        )

    def _fail(self, session: Session, error: Exception) -> Response:
        session.error_count += 1
        logger.error(
            f"[OrderFlow] session {mask_identifier(session.session_id)} failed in "
            f"{session.state.value} (errors={session.error_count}): {error}",
            exc_info=error,
        )
        self._transition(session, FlowState.ERROR_STATE)
        return Response(success=False, message=bot_message.processing_error_message(), next_step="retry")
