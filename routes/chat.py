"""
Chat endpoints as a Flask Blueprint.
"""

import uuid

from flask import Blueprint, request, jsonify

from chat_logger import get_logger, mask_identifier, sanitize_log_string
from store_registry import get_engine

logger = get_logger("order_chat")

chat_bp = Blueprint("chat", __name__)


@chat_bp.route("/chat", methods=["POST"])
def chat():
    """
    Main chat endpoint.

    Request:
        POST /chat
        {
            "message": "đặt hàng",
            "session_id": "abc123",
            "user_context": {"user_id": "u-42"}
        }

    Response:
        Response.to_dict() plus "session_id"
    """
    body = request.get_json(silent=True) or {}
    message = (body.get("message") or "").strip()
    if not message:
        return jsonify({"error": "message is required"}), 400

    session_id = body.get("session_id") or uuid.uuid4().hex
    user_context = body.get("user_context") or {}
    logger.info(
        f"[API] /chat session={mask_identifier(session_id)} "
        f"message='{sanitize_log_string(message)}'"
    )

    response = get_engine().handle(message, session_id, user_context)
    payload = response.to_dict()
    payload["session_id"] = session_id
    return jsonify(payload)


@chat_bp.route("/session/<session_id>", methods=["GET"])
def get_session_state(session_id):
    session = get_engine().get_session(session_id)
    if session is None:
        return jsonify({"error": "session not found"}), 404
    return jsonify({
        "session_id": session_id,
        "state": session.state.value,
        "error_count": session.error_count,
        "history_length": len(session.history),
        "last_activity": session.last_activity,
    })


@chat_bp.route("/session/<session_id>", methods=["DELETE"])
def delete_session(session_id):
    deleted = get_engine().sessions.delete(session_id)
    return jsonify({"session_id": session_id, "deleted": deleted})
