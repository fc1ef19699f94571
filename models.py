"""
Data models for the conversational order checkout engine.
"""

from enum import Enum
from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Any


class FlowState(Enum):
    """Order flow states for one chat session."""
    IDLE                = "IDLE"
    ORDER_INITIATED     = "ORDER_INITIATED"
    CART_VALIDATED      = "CART_VALIDATED"
    ADDRESS_SELECTION   = "ADDRESS_SELECTION"
    ADDRESS_SELECTED    = "ADDRESS_SELECTED"
    SHIPPING_CALCULATED = "SHIPPING_CALCULATED"
    PAYMENT_SELECTION   = "PAYMENT_SELECTION"
    PAYMENT_SELECTED    = "PAYMENT_SELECTED"
    SUMMARY_SHOWN       = "SUMMARY_SHOWN"
    ORDER_CREATED       = "ORDER_CREATED"
    ERROR_STATE         = "ERROR_STATE"


class OrderIntent(Enum):
    ORDER_REQUEST      = "ORDER_REQUEST"
    ORDER_CONTEXT      = "ORDER_CONTEXT"
    ORDER_CONFIRMATION = "ORDER_CONFIRMATION"
    ORDER_CANCELLATION = "ORDER_CANCELLATION"
    ADDRESS_SELECTION  = "ADDRESS_SELECTION"
    PAYMENT_SELECTION  = "PAYMENT_SELECTION"
    ORDER_SUMMARY      = "ORDER_SUMMARY"
    ORDER_STATUS       = "ORDER_STATUS"
    NO_ORDER           = "NO_ORDER"


class Action(Enum):
    """Engine actions selected by the (state, intent) dispatch table."""
    INITIATE_ORDER  = "initiate_order"
    RESOLVE_ADDRESS = "resolve_address"
    SELECT_ADDRESS  = "select_address"
    SELECT_PAYMENT  = "select_payment"
    SHOW_SUMMARY    = "show_summary"
    CONFIRM_ORDER   = "confirm_order"
    CANCEL_ORDER    = "cancel_order"
    CHECK_STATUS    = "check_status"
    GUIDANCE        = "guidance"


class PaymentMethod(Enum):
    COD    = "COD"
    ONLINE = "ONLINE"

    @property
    def order_value(self) -> str:
        """Value stored on the persisted order."""
        return "CashOnDelivery" if self is PaymentMethod.COD else "VNPay"


class ValidationStatus(Enum):
    VALID               = "VALID"
    INSUFFICIENT_STOCK  = "INSUFFICIENT_STOCK"
    PRODUCT_UNAVAILABLE = "PRODUCT_UNAVAILABLE"
    PRODUCT_NOT_FOUND   = "PRODUCT_NOT_FOUND"
    PRICE_CHANGED       = "PRICE_CHANGED"
    VALIDATION_ERROR    = "VALIDATION_ERROR"


class Severity(Enum):
    SUCCESS = "SUCCESS"
    INFO    = "INFO"
    WARNING = "WARNING"
    ERROR   = "ERROR"


class OrderStatus(Enum):
    PROCESSING = "Processing"
    SHIPPED    = "Shipped"
    DELIVERED  = "Delivered"
    CANCELLED  = "Cancelled"


class OrderSource(Enum):
    CHATBOT = "chatbot"


# ═══════════════════════════════════════════
# CATALOG / CART
# ═══════════════════════════════════════════

@dataclass
class Product:
    id: str
    name: str
    price: int
    stock: int
    active: bool = True
    sold: int = 0


@dataclass
class CartLine:
    """One cart line. ``unit_price`` is the price snapshotted when the item was added."""
    product_id: str
    name: str
    quantity: int
    unit_price: int
    available_stock: Optional[int] = None
    weight: int = 200   # grams
    length: int = 20    # cm
    width: int = 20
    height: int = 5

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CartLine":
        return cls(**data)


@dataclass
class Cart:
    user_id: str
    lines: List[CartLine] = field(default_factory=list)
    total_price: int = 0

    def recompute_total(self) -> int:
        self.total_price = sum(line.line_total for line in self.lines)
        return self.total_price

    @property
    def is_empty(self) -> bool:
        return not self.lines


# ═══════════════════════════════════════════
# ADDRESS / SHIPPING
# ═══════════════════════════════════════════

@dataclass
class Address:
    street: str
    ward_name: str = ""
    ward_code: str = ""
    district_name: str = ""
    district_id: int = 0
    province_name: str = ""
    province_id: int = 0
    is_default: bool = False

    def one_line(self) -> str:
        parts = [self.street, self.ward_name, self.district_name, self.province_name]
        return ", ".join(p for p in parts if p)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Address":
        return cls(**data)


@dataclass
class PackageDimensions:
    weight: int
    length: int
    width: int
    height: int


@dataclass
class ShippingInfo:
    fee: int
    estimated_days: int
    fallback: bool = False
    service_type: str = "standard"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ShippingInfo":
        return cls(**data)


@dataclass(frozen=True)
class OrderSummary:
    """Totals for a checkout. ``total`` is always derived from its inputs."""
    subtotal: int
    shipping_fee: int
    service_fee: int

    @property
    def total(self) -> int:
        return self.subtotal + self.shipping_fee + self.service_fee

    @classmethod
    def from_lines(cls, lines: List[CartLine], shipping_fee: int, service_fee: int) -> "OrderSummary":
        return cls(
            subtotal=sum(line.line_total for line in lines),
            shipping_fee=shipping_fee,
            service_fee=service_fee,
        )


# ═══════════════════════════════════════════
# ORDERS
# ═══════════════════════════════════════════

@dataclass
class OrderItem:
    product_id: str
    name: str
    quantity: int
    price: int


@dataclass
class Order:
    id: str
    user_id: str
    items: List[OrderItem]
    shipping_address: Address
    payment_method: str
    shipping_price: int
    service_fee: int
    total_price: int
    status: OrderStatus = OrderStatus.PROCESSING
    source: OrderSource = OrderSource.CHATBOT
    created_at: float = 0.0
    estimated_days: int = 3

    @property
    def order_number(self) -> str:
        return f"#DH{self.id[-6:].upper()}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "items": [asdict(item) for item in self.items],
            "shipping_address": self.shipping_address.to_dict(),
            "payment_method": self.payment_method,
            "shipping_price": self.shipping_price,
            "service_fee": self.service_fee,
            "total_price": self.total_price,
            "status": self.status.value,
            "source": self.source.value,
            "created_at": self.created_at,
            "estimated_days": self.estimated_days,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Order":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            items=[OrderItem(**item) for item in data.get("items", [])],
            shipping_address=Address.from_dict(data["shipping_address"]),
            payment_method=data["payment_method"],
            shipping_price=data["shipping_price"],
            service_fee=data.get("service_fee", 0),
            total_price=data["total_price"],
            status=OrderStatus(data.get("status", OrderStatus.PROCESSING.value)),
            source=OrderSource(data.get("source", OrderSource.CHATBOT.value)),
            created_at=data.get("created_at", 0.0),
            estimated_days=data.get("estimated_days", 3),
        )


# ═══════════════════════════════════════════
# SESSION
# ═══════════════════════════════════════════

@dataclass
class OrderContext:
    """Checkout data gathered across turns."""
    cart: List[CartLine] = field(default_factory=list)
    address_options: List[Address] = field(default_factory=list)
    selected_address: Optional[Address] = None
    shipping: Optional[ShippingInfo] = None
    payment_method: Optional[PaymentMethod] = None
    created_order: Optional[Order] = None

    def to_dict(self) -> dict:
        return {
            "cart": [line.to_dict() for line in self.cart],
            "address_options": [a.to_dict() for a in self.address_options],
            "selected_address": self.selected_address.to_dict() if self.selected_address else None,
            "shipping": self.shipping.to_dict() if self.shipping else None,
            "payment_method": self.payment_method.value if self.payment_method else None,
            "created_order": self.created_order.to_dict() if self.created_order else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OrderContext":
        return cls(
            cart=[CartLine.from_dict(line) for line in data.get("cart", [])],
            address_options=[Address.from_dict(a) for a in data.get("address_options", [])],
            selected_address=Address.from_dict(data["selected_address"]) if data.get("selected_address") else None,
            shipping=ShippingInfo.from_dict(data["shipping"]) if data.get("shipping") else None,
            payment_method=PaymentMethod(data["payment_method"]) if data.get("payment_method") else None,
            created_order=Order.from_dict(data["created_order"]) if data.get("created_order") else None,
        )


@dataclass
class HistoryEntry:
    timestamp: float
    user_message: str
    bot_response: str
    state: str
    success: bool


@dataclass
class Session:
    session_id: str
    state: FlowState = FlowState.IDLE
    order_context: OrderContext = field(default_factory=OrderContext)
    history: List[HistoryEntry] = field(default_factory=list)
    error_count: int = 0
    last_activity: float = 0.0
    state_changed_at: float = 0.0
    user_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "order_context": self.order_context.to_dict(),
            "history": [asdict(h) for h in self.history],
            "error_count": self.error_count,
            "last_activity": self.last_activity,
            "state_changed_at": self.state_changed_at,
            "user_id": self.user_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        return cls(
            session_id=data["session_id"],
            state=FlowState(data.get("state", FlowState.IDLE.value)),
            order_context=OrderContext.from_dict(data.get("order_context") or {}),
            history=[HistoryEntry(**h) for h in data.get("history", [])],
            error_count=data.get("error_count", 0),
            last_activity=data.get("last_activity", 0.0),
            state_changed_at=data.get("state_changed_at", 0.0),
            user_id=data.get("user_id"),
        )


# ═══════════════════════════════════════════
# CLASSIFIER I/O
# ═══════════════════════════════════════════

@dataclass
class IntentContext:
    is_in_flow: bool = False
    current_state: FlowState = FlowState.IDLE
    has_cart_items: bool = False
    needs_address_selection: bool = False
    needs_payment_selection: bool = False
    needs_confirmation: bool = False


@dataclass
class IntentResult:
    intent: OrderIntent
    confidence: float
    trigger: bool
    reason: str = ""

    @classmethod
    def no_order(cls, reason: str = "no order keyword matched") -> "IntentResult":
        return cls(intent=OrderIntent.NO_ORDER, confidence=0.0, trigger=False, reason=reason)


@dataclass
class OrderInfo:
    """Structured details pulled out of a single message."""
    payment_method: Optional[PaymentMethod] = None
    address_selection: Optional[int] = None
    confirmation: Optional[bool] = None


# ═══════════════════════════════════════════
# INVENTORY VALIDATION
# ═══════════════════════════════════════════

@dataclass
class LineValidation:
    line: CartLine
    status: ValidationStatus
    severity: Severity
    message: str
    available: Optional[int] = None
    suggested_quantity: Optional[int] = None
    old_price: Optional[int] = None
    new_price: Optional[int] = None


@dataclass
class Recommendation:
    type: str           # ADJUST_QUANTITY | REMOVE_PRODUCT
    product_id: str
    product_name: str
    suggested_quantity: Optional[int] = None
    current_quantity: Optional[int] = None


@dataclass
class InventoryReport:
    success: bool
    results: List[LineValidation] = field(default_factory=list)
    has_issues: bool = False
    message: str = ""
    recommendations: List[Recommendation] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=dict)

    @property
    def summary(self) -> str:
        return self.message

    @property
    def conflicting_lines(self) -> List[LineValidation]:
        """Lines that cannot be fulfilled as requested."""
        return [r for r in self.results if r.severity in (Severity.ERROR, Severity.WARNING)]

    @property
    def has_stock_conflict(self) -> bool:
        return bool(self.conflicting_lines)


@dataclass
class AdjustedLine:
    product_id: str
    name: str
    old_quantity: int
    new_quantity: int


@dataclass
class AutoFixResult:
    removed: List[CartLine] = field(default_factory=list)
    adjusted: List[AdjustedLine] = field(default_factory=list)
    remaining_count: int = 0
    new_total: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.removed or self.adjusted)


# ═══════════════════════════════════════════
# ENGINE RESPONSE
# ═══════════════════════════════════════════

@dataclass
class Response:
    success: bool
    message: str
    order_flow: bool = True
    next_step: Optional[str] = None
    needs_confirmation: bool = False
    needs_address_selection: bool = False
    needs_payment_selection: bool = False
    order: Optional[Dict[str, Any]] = None
    state: Optional[str] = None
    completed: bool = False
    requires_auth: bool = False
    intent: Optional[str] = None
    confidence: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)
