"""
Application configuration for the order checkout chat engine.
Contains environment variables, constants, and settings.
"""

import os
from dotenv import load_dotenv

load_dotenv()

# ═══════════════════════════════════════════
# SERVER
# ═══════════════════════════════════════════

PORT = int(os.getenv("PORT", 5009))
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ═══════════════════════════════════════════
# SESSION STORE
# ═══════════════════════════════════════════

SESSION_BACKEND = os.getenv("SESSION_BACKEND", "memory")  # memory, redis
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
SESSION_KEY_PREFIX = os.getenv("SESSION_KEY_PREFIX", "order_chat:session:")
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "1800"))
SESSION_LOCK_TIMEOUT_SECONDS = int(os.getenv("SESSION_LOCK_TIMEOUT_SECONDS", "30"))
SESSION_LOCK_WAIT_SECONDS = float(os.getenv("SESSION_LOCK_WAIT_SECONDS", "10"))
SESSION_PURGE_INTERVAL_SECONDS = int(os.getenv("SESSION_PURGE_INTERVAL_SECONDS", "60"))

# ═══════════════════════════════════════════
# ORDER FLOW
# ═══════════════════════════════════════════

# ORDER_CREATED stays visible this long before the session falls back to IDLE
ORDER_RESET_GRACE_SECONDS = float(os.getenv("ORDER_RESET_GRACE_SECONDS", "1"))
MAX_HISTORY_TURNS = int(os.getenv("MAX_HISTORY_TURNS", "10"))
MAX_ADDRESS_OPTIONS = int(os.getenv("MAX_ADDRESS_OPTIONS", "10"))
RECENT_ORDERS_LIMIT = int(os.getenv("RECENT_ORDERS_LIMIT", "5"))
SERVICE_FEE = int(os.getenv("SERVICE_FEE", "0"))

# ═══════════════════════════════════════════
# SHIPPING (GHN)
# ═══════════════════════════════════════════

GHN_API_URL = os.getenv("GHN_API_URL", "")
GHN_TOKEN = os.getenv("GHN_TOKEN", "")
GHN_SHOP_ID = os.getenv("GHN_SHOP_ID", "")
GHN_SERVICE_TYPE_ID = 2  # E-commerce delivery

WAREHOUSE_DISTRICT_ID = int(os.getenv("WAREHOUSE_DISTRICT_ID", "1454"))
WAREHOUSE_WARD_CODE = os.getenv("WAREHOUSE_WARD_CODE", "21211")

SHIPPING_TIMEOUT_SECONDS = float(os.getenv("SHIPPING_TIMEOUT_SECONDS", "5"))
FALLBACK_SHIPPING_FEE = int(os.getenv("FALLBACK_SHIPPING_FEE", "30000"))
DEFAULT_ESTIMATED_DAYS = int(os.getenv("DEFAULT_ESTIMATED_DAYS", "3"))

# Per-line package defaults; also the minimum package size sent to the carrier
DEFAULT_ITEM_WEIGHT = 200   # grams
DEFAULT_ITEM_LENGTH = 20    # cm
DEFAULT_ITEM_WIDTH = 20
DEFAULT_ITEM_HEIGHT = 5

REQUEST_HEADERS = {
    "Accept": "application/json, text/plain, */*",
    "Content-Type": "application/json",
}
