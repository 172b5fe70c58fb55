# Overview: Flask API routes for slot administration; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..errors import VendingError
from ..services import slot_service


slots_bp = Blueprint("slots", __name__, url_prefix="/api/slots")


def _error(e: VendingError):
    return jsonify({"error": e.message, "details": e.details}), e.status_code


@slots_bp.post("/")
def create_slot_route():
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        machine_id = data.get("machine_id")
        slot_number = data.get("slot_number")

        if not all([machine_id, slot_number]):
            return jsonify({"error": "machine_id and slot_number required"}), 400

        slot = slot_service.create_slot(
            machine_id,
            slot_number,
            capacity=data.get("capacity", 10),
            product_id=data.get("product_id"),
            initial_stock=data.get("initial_stock", 0),
            price_override=data.get("price_override"),
        )
        return jsonify({"slot": slot.to_dict()}), 201

    except VendingError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to create slot")
        return jsonify({"error": "Internal server error"}), 500


@slots_bp.get("/<int:slot_id>")
def get_slot_route(slot_id: int):
    try:
        return jsonify({"slot": slot_service.get_stock_summary(slot_id)}), 200
    except VendingError as e:
        return _error(e)


@slots_bp.get("/low-stock")
def low_stock_route():
    machine_id = request.args.get("machine_id", type=int)
    slots = slot_service.find_low_stock(machine_id)
    return jsonify({"slots": [s.to_dict() for s in slots]}), 200


@slots_bp.post("/<int:slot_id>/restock")
def restock_slot_route(slot_id: int):
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        quantity = data.get("quantity")

        if quantity is None:
            return jsonify({"error": "quantity required"}), 400

        slot = slot_service.restock_slot(slot_id, quantity)
        return jsonify({"slot": slot.to_dict()}), 200

    except VendingError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to restock slot")
        return jsonify({"error": "Internal server error"}), 500


@slots_bp.put("/<int:slot_id>/product")
def assign_product_route(slot_id: int):
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        product_id = data.get("product_id")

        if not product_id:
            return jsonify({"error": "product_id required"}), 400

        slot = slot_service.assign_product(slot_id, product_id, data.get("initial_stock", 0))
        return jsonify({"slot": slot.to_dict()}), 200

    except VendingError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to assign product")
        return jsonify({"error": "Internal server error"}), 500


@slots_bp.patch("/<int:slot_id>")
def update_slot_route(slot_id: int):
    """Update price override, active flag, or capacity."""
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        if not data:
            return jsonify({"error": "No fields to update"}), 400

        slot = None
        if "price_override" in data:
            slot = slot_service.set_price_override(slot_id, data["price_override"])
        if "active" in data:
            slot = slot_service.set_slot_active(slot_id, data["active"])
        if "capacity" in data:
            slot = slot_service.resize_slot(slot_id, data["capacity"])
        if slot is None:
            return jsonify({"error": "Only price_override, active and capacity can be updated"}), 400

        return jsonify({"slot": slot.to_dict()}), 200

    except VendingError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update slot")
        return jsonify({"error": "Internal server error"}), 500


@slots_bp.post("/<int:slot_id>/empty")
def empty_slot_route(slot_id: int):
    try:
        slot = slot_service.empty_slot(slot_id)
        return jsonify({"slot": slot.to_dict()}), 200

    except VendingError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to empty slot")
        return jsonify({"error": "Internal server error"}), 500
