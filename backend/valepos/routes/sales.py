# Overview: Flask API routes for committed sales; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g
from flask import current_app

from ..decorators import require_actor, require_role, ROLE_CASHIER, ROLE_MANAGER
from ..errors import ValeError
from ..services import sales_service
from valepos.validation import require_json_object


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("/<sale_number>")
@require_actor
def get_sale_route(sale_number: str):
    try:
        return jsonify(sales_service.get_sale(sale_number)), 200

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load sale %s", sale_number)
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@sales_bp.post("/<sale_number>/cancel")
@require_actor
@require_role(ROLE_MANAGER)
def cancel_sale_route(sale_number: str):
    """
    Flag a sale as cancelled.

    Available to: admin, manager. Body: {reason}
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        result = sales_service.cancel_sale(sale_number, data.get("reason"), g.actor_id)
        return jsonify(result), 200

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel sale %s", sale_number)
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500
