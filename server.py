"""
Order Checkout Chat API Backend
Runs on PORT (default 5009) with the /chat endpoint.

Usage:
    python server.py

Endpoints:
    POST   http://localhost:5009/chat
           Body: {"message": "...", "session_id": "...", "user_context": {"user_id": "..."}}
    GET    http://localhost:5009/session/<session_id>
    DELETE http://localhost:5009/session/<session_id>
    GET    http://localhost:5009/health
"""

from datetime import datetime, timezone

from flask import Flask, jsonify
from flask_cors import CORS

from app_config import PORT, DEBUG, GHN_API_URL, SESSION_BACKEND
from chat_logger import get_logger
from core.session import create_session_store
from order_handler import OrderFlowEngine
from routes.chat import chat_bp
from services.shipping_service import GHNShippingClient, ShippingCalculator
from store_registry import set_engine
from stores import InMemoryCartStore, InMemoryOrderStore, InMemoryProductStore, InMemoryUserStore

logger = get_logger("order_chat")


def build_engine() -> OrderFlowEngine:
    """
    Wire the engine from configuration. Persistence collaborators default to
    the in-memory stores; deployments register an engine built on their own.
    """
    carrier = GHNShippingClient() if GHN_API_URL else None
    if carrier is None:
        logger.warning("GHN_API_URL not set, every shipping quote will use the fallback fee")
    return OrderFlowEngine(
        session_store=create_session_store(SESSION_BACKEND),
        cart_store=InMemoryCartStore(),
        product_store=InMemoryProductStore(),
        user_store=InMemoryUserStore(),
        order_store=InMemoryOrderStore(),
        shipping_calculator=ShippingCalculator(carrier),
    )


def create_app(engine: OrderFlowEngine = None) -> Flask:
    app = Flask(__name__)
    CORS(app)

    set_engine(engine if engine is not None else build_engine())
    app.register_blueprint(chat_bp)

    @app.route("/health", methods=["GET"])
    def health():
        """Health check endpoint."""
        return jsonify({
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session_backend": SESSION_BACKEND,
        })

    return app


if __name__ == "__main__":
    app = create_app()

    print("=" * 60)
    print("  Order Checkout - Chat API Server")
    print("=" * 60)
    print()
    print(f"🚀 Starting server on http://localhost:{PORT}")
    print(f"   POST http://localhost:{PORT}/chat")
    print(f"   GET  http://localhost:{PORT}/session/<session_id>")
    print(f"   GET  http://localhost:{PORT}/health")
    print()

    app.run(
        host="0.0.0.0",
        port=PORT,
        debug=DEBUG,
        threaded=True,
    )
