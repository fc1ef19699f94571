"""
Core Helpers

Money formatting, delivery-date arithmetic, and user-id resolution.
"""

from datetime import datetime, timedelta
from typing import Optional

# Values a client may send before a real user id is bound
USER_PLACEHOLDERS = {
    "CURRENT_USER_ID",
    "CURRENT_USER",
    "current_user_id",
    "current_user",
    "anonymous",
    "guest",
}


def format_vnd(amount: int) -> str:
    """Format an amount in dong the Vietnamese way: 1250000 -> '1.250.000đ'."""
    return f"{int(amount):,}".replace(",", ".") + "đ"


def estimated_delivery_date(created_at: float, days: int) -> str:
    """Creation timestamp plus ``days``, as dd/mm/YYYY."""
    return (datetime.fromtimestamp(created_at) + timedelta(days=days)).strftime("%d/%m/%Y")


def resolve_user_id(user_context: Optional[dict]) -> Optional[str]:
    """
    Extract the authenticated user id from a request/user context map.

    Accepts ``user_id``, ``userId`` or ``customer_id``. Placeholders and
    blank values count as "not logged in".

    Returns:
        The user id as a string, or None.
    """
    if not user_context:
        return None
    for key in ("user_id", "userId", "customer_id"):
        value = user_context.get(key)
        if value is None:
            continue
        value = str(value).strip()
        if value and value not in USER_PLACEHOLDERS:
            return value
    return None
