# Overview: Flask API routes for cashier shifts; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g
from flask import current_app

from ..decorators import require_actor, require_role, ROLE_CASHIER, ROLE_MANAGER, ROLE_ADMIN
from ..errors import ValeError
from ..services import shift_service
from valepos.validation import require_amount, require_json_object


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


@shifts_bp.post("/open")
@require_actor
@require_role(ROLE_CASHIER, ROLE_MANAGER)
def open_shift_route():
    """Body: {register_code, opening_cash}"""
    try:
        data = require_json_object(request.get_json(silent=True))
        shift = shift_service.open_shift(
            g.actor_id,
            data.get("register_code"),
            require_amount(data.get("opening_cash", 0), "opening_cash", allow_zero=True),
        )
        return jsonify({"shift": shift}), 201

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to open shift")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/close")
@require_actor
@require_role(ROLE_CASHIER, ROLE_MANAGER)
def close_shift_route(shift_id: int):
    """Body: {closing_cash}. Managers may close other cashiers' shifts."""
    try:
        data = require_json_object(request.get_json(silent=True))
        shift = shift_service.close_shift(
            shift_id,
            require_amount(data.get("closing_cash", 0), "closing_cash", allow_zero=True),
            current_cashier_id=g.actor_id,
            manager_override=g.actor_role in (ROLE_MANAGER, ROLE_ADMIN),
        )
        return jsonify({"shift": shift}), 200

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to close shift %s", shift_id)
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@shifts_bp.get("/<int:shift_id>/theoretical-cash")
@require_actor
def theoretical_cash_route(shift_id: int):
    try:
        total = shift_service.theoretical_cash_total(shift_id)
        return jsonify({"shift_id": shift_id, "theoretical_cash": total}), 200

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to compute theoretical cash for shift %s", shift_id)
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500
