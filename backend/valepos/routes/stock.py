# Overview: Flask API routes for warehouse stock; entries, adjustments, transfers, availability, low stock and movements.

from flask import Blueprint, request, jsonify, g
from flask import current_app

from ..decorators import require_actor, require_role, ROLE_MANAGER
from ..errors import ValeError
from ..services import inventory_service
from ..services.concurrency import vale_transaction
from .. import signals
from valepos.quantities import quantity_str
from valepos.validation import optional_int, require_int, require_json_object, require_text


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.post("/adjust")
@require_actor
@require_role(ROLE_MANAGER)
def adjust_stock_route():
    """
    Set a warehouse's available quantity for a variant.

    Body: {variant_id, warehouse_id, new_quantity, reason}
    Returns: {previous, new, movement_id}
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        variant_id = require_int(data, "variant_id")
        warehouse_id = require_int(data, "warehouse_id")
        reason = require_text(data, "reason")

        with vale_transaction():
            result = inventory_service.adjust_stock(
                variant_id,
                warehouse_id,
                data.get("new_quantity"),
                reason=reason,
                actor_id=g.actor_id,
            )

        signals.emit(signals.stock_adjusted, current_app._get_current_object(), adjustment=result)
        return jsonify(result), 200

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@stock_bp.post("/receive")
@require_actor
@require_role(ROLE_MANAGER)
def receive_stock_route():
    """
    Stock entry (purchase, supplier delivery).

    Body: {variant_id, warehouse_id, quantity, reason, reference?}
    Returns: {movement_id, previous, new}
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        variant_id = require_int(data, "variant_id")
        warehouse_id = require_int(data, "warehouse_id")
        reason = require_text(data, "reason")
        reference = data.get("reference")

        with vale_transaction():
            movement = inventory_service.receive_stock(
                variant_id,
                warehouse_id,
                data.get("quantity"),
                reason=reason,
                actor_id=g.actor_id,
                reference=str(reference)[:64] if reference else None,
            )
            result = {
                "variant_id": variant_id,
                "warehouse_id": warehouse_id,
                "movement_id": movement.id,
                "previous": quantity_str(movement.quantity_before),
                "new": quantity_str(movement.quantity_after),
            }

        signals.emit(signals.stock_adjusted, current_app._get_current_object(), entry=result)
        return jsonify(result), 201

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to receive stock")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@stock_bp.get("/below-minimum")
@require_actor
@require_role(ROLE_MANAGER)
def below_minimum_route():
    """Query: warehouse_id."""
    try:
        rows = inventory_service.list_below_minimum(warehouse_id=optional_int(request.args, "warehouse_id"))
        return jsonify({"stock": rows, "count": len(rows)}), 200

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list stock below minimum")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@stock_bp.post("/transfer")
@require_actor
@require_role(ROLE_MANAGER)
def transfer_stock_route():
    """Body: {variant_id, from_warehouse_id, to_warehouse_id, quantity, reason?}"""
    try:
        data = require_json_object(request.get_json(silent=True))
        variant_id = require_int(data, "variant_id")
        from_id = require_int(data, "from_warehouse_id")
        to_id = require_int(data, "to_warehouse_id")

        with vale_transaction():
            result = inventory_service.transfer_stock(
                variant_id,
                from_id,
                to_id,
                data.get("quantity"),
                reason=data.get("reason"),
                actor_id=g.actor_id,
            )

        signals.emit(signals.stock_adjusted, current_app._get_current_object(), transfer=result)
        return jsonify(result), 200

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to transfer stock")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@stock_bp.get("/variants/<int:variant_id>")
@require_actor
def availability_route(variant_id: int):
    try:
        return jsonify(inventory_service.get_availability(variant_id)), 200

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load availability for variant %s", variant_id)
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@stock_bp.get("/variants/<int:variant_id>/movements")
@require_actor
def movements_route(variant_id: int):
    """Query: warehouse_id, limit (max 1000)."""
    try:
        limit = optional_int(request.args, "limit") or 200
        movements = inventory_service.list_movements(
            variant_id,
            warehouse_id=optional_int(request.args, "warehouse_id"),
            limit=min(max(limit, 1), 1000),
        )
        return jsonify({"movements": movements, "count": len(movements)}), 200

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list movements for variant %s", variant_id)
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500
