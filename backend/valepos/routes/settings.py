# Overview: Flask API routes for system settings; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify
from flask import current_app

from ..decorators import require_actor, require_role, ROLE_MANAGER
from ..errors import NotFoundError, ValeError, ValidationError
from ..extensions import db
from ..services.config_service import DEFAULT_SETTINGS, get_configuration
from valepos.validation import require_json_object


settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("")
@require_actor
def list_settings_route():
    """All settings, stored and defaulted. Query: category."""
    try:
        config = get_configuration()
        category = request.args.get("category")
        if category:
            return jsonify({"category": category, "values": config.by_category(category)}), 200
        return jsonify({"settings": config.list_settings()}), 200

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list settings")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@settings_bp.get("/<key>")
@require_actor
def get_setting_route(key: str):
    try:
        config = get_configuration()
        value = config.get(key)
        if value is None and key not in DEFAULT_SETTINGS:
            raise NotFoundError("Setting not found", {"key": key})
        return jsonify({"key": key, "value": value}), 200

    except ValeError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to read setting %s", key)
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@settings_bp.put("/<key>")
@require_actor
@require_role(ROLE_MANAGER)
def put_setting_route(key: str):
    """Body: {value, value_type?, description?, category?}"""
    try:
        data = require_json_object(request.get_json(silent=True))
        if "value" not in data:
            raise ValidationError("value is required", {"field": "value"})

        config = get_configuration()
        row = config.set(
            key,
            data["value"],
            description=data.get("description"),
            value_type=data.get("value_type"),
            category=data.get("category"),
        )
        db.session.commit()
        config.invalidate(key)
        return jsonify({"setting": row.to_dict(), "value": config.get(key)}), 200

    except ValeError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update setting %s", key)
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500
