# Overview: Flask API routes for vales; parses input and returns JSON responses.

"""Vale (voucher) API routes: seller creation, cashier queue, finalize and cancel."""

from flask import Blueprint, request, jsonify, g
from flask import current_app

from ..decorators import require_actor, require_role, ROLE_CASHIER, ROLE_MANAGER, ROLE_SELLER
from ..errors import ValeError, ValidationError
from ..services import order_service, sales_service
from valepos.time_utils import parse_iso_date
from valepos.validation import optional_int, require_json_object


vouchers_bp = Blueprint("vouchers", __name__, url_prefix="/api/vouchers")


@vouchers_bp.post("")
@require_actor
@require_role(ROLE_SELLER, ROLE_CASHIER, ROLE_MANAGER)
def create_voucher_route():
    """
    Create a vale and reserve its stock.

    Body: {document_type, lines: [{variant_id, quantity, unit_price, price_kind?,
    approver_id?, price_modality_id?, warehouse_id?}], customer?, customer_id?, notes?}
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        result = order_service.create_voucher(
            g.actor_id,
            data.get("document_type"),
            data.get("lines"),
            data.get("customer"),
            customer_id=optional_int(data, "customer_id"),
            notes=data.get("notes"),
        )
        return jsonify(result), 201

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create vale")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@vouchers_bp.get("")
@require_actor
def list_vouchers_route():
    """Cashier queue. Query: state, day (YYYY-MM-DD), limit."""
    try:
        try:
            day = parse_iso_date(request.args.get("day"))
        except ValueError:
            raise ValidationError("day must be YYYY-MM-DD", {"field": "day"})
        limit = optional_int(request.args, "limit") or 200
        vouchers = order_service.list_vouchers(
            state=request.args.get("state") or None,
            day=day,
            limit=min(max(limit, 1), 500),
        )
        return jsonify({"vouchers": vouchers, "count": len(vouchers)}), 200

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list vales")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@vouchers_bp.get("/<number>")
@require_actor
def get_voucher_route(number: str):
    """Vale detail for the register screen (no lock taken)."""
    try:
        return jsonify(order_service.load_voucher_detail(number)), 200

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load vale %s", number)
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@vouchers_bp.post("/<number>/submit")
@require_actor
@require_role(ROLE_SELLER, ROLE_CASHIER, ROLE_MANAGER)
def submit_voucher_route(number: str):
    """Reserve stock for a pending vale and hand it to the register queue."""
    try:
        return jsonify(order_service.submit_voucher(number, g.actor_id)), 200

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to submit vale %s", number)
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@vouchers_bp.post("/<number>/finalize")
@require_actor
@require_role(ROLE_CASHIER, ROLE_MANAGER)
def finalize_voucher_route(number: str):
    """
    Finalize a vale into a sale.

    Body: {document_type?, payment_method, amount_paid?, discount?,
    customer?: {tax_id, legal_name, name, ...}, payments?: [{method, amount, reference?}]}

    409 when another cashier holds the vale.
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        result = sales_service.finalize_voucher(
            number,
            cashier_id=g.actor_id,
            document_type=data.get("document_type"),
            payment_method=data.get("payment_method"),
            amount_paid=data.get("amount_paid"),
            discount=data.get("discount", 0),
            customer_overrides=data.get("customer"),
            payments=data.get("payments"),
        )
        return jsonify(result), 200

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to finalize vale %s", number)
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@vouchers_bp.post("/<number>/cancel")
@require_actor
@require_role(ROLE_SELLER, ROLE_CASHIER, ROLE_MANAGER)
def cancel_voucher_route(number: str):
    """Cancel a non-terminal vale and release its stock. Body: {reason?}"""
    try:
        data = require_json_object(request.get_json(silent=True))
        result = order_service.cancel_voucher(number, data.get("reason"), g.actor_id)
        return jsonify(result), 200

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel vale %s", number)
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500
