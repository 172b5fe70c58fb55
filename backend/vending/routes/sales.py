# Overview: Flask API routes for sale operations; parses input and returns JSON responses.

# backend/vending/routes/sales.py
"""Sales API routes over the sale lifecycle services"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import CheckoutError, VendingError
from ..services import checkout_service, expiration_service, reporting_service, sale_service
from vending.time_utils import parse_iso_datetime


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _error(e: VendingError):
    body = {"error": e.message, "details": e.details}
    if isinstance(e, CheckoutError):
        body["phase"] = e.phase
        body["sale_id"] = e.sale_id
    return jsonify(body), e.status_code


def _int_arg(name: str):
    value = request.args.get(name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        return "invalid"


@sales_bp.post("/")
def create_sale_route():
    """Create a draft sale."""
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        slot_id = data.get("slot_id")
        product_id = data.get("product_id")

        if not all([slot_id, product_id]):
            return jsonify({"error": "slot_id and product_id required"}), 400

        sale = sale_service.create_sale(
            slot_id,
            product_id,
            quantity=data.get("quantity", 1),
            user_id=data.get("user_id"),
            metadata=data.get("metadata"),
        )
        return jsonify({"sale": sale.to_dict()}), 201

    except VendingError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/checkout")
def checkout_route():
    """Create, reserve, and pay in one call."""
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        slot_id = data.get("slot_id")
        product_id = data.get("product_id")
        payment_ref = data.get("payment_ref")

        if not all([slot_id, product_id, payment_ref]):
            return jsonify({"error": "slot_id, product_id and payment_ref required"}), 400

        sale = checkout_service.create_and_pay(
            slot_id,
            product_id,
            payment_ref,
            quantity=data.get("quantity", 1),
            user_id=data.get("user_id"),
            ttl_minutes=data.get("ttl_minutes"),
            metadata=data.get("metadata"),
        )
        return jsonify({"sale": sale.to_dict()}), 201

    except VendingError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to check out sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/")
def list_sales_route():
    """List sales with optional filters and pagination."""
    try:
        ints = {name: _int_arg(name) for name in ("slot_id", "machine_id", "product_id", "min_total", "max_total", "limit", "offset")}
        bad = [name for name, value in ints.items() if value == "invalid"]
        if bad:
            return jsonify({"error": f"{', '.join(bad)} must be integers"}), 400

        sales, total = reporting_service.list_sales(
            user_id=request.args.get("user_id"),
            slot_id=ints["slot_id"],
            machine_id=ints["machine_id"],
            product_id=ints["product_id"],
            state=request.args.get("state"),
            created_from=parse_iso_datetime(request.args.get("from")),
            created_to=parse_iso_datetime(request.args.get("to")),
            min_total=ints["min_total"],
            max_total=ints["max_total"],
            limit=ints["limit"] or 50,
            offset=ints["offset"] or 0,
        )
        return jsonify({"sales": [s.to_dict() for s in sales], "count": total}), 200

    except VendingError as e:
        return _error(e)
    except ValueError:
        return jsonify({"error": "from/to must be ISO-8601 datetimes"}), 400
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = sale_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict()}), 200
    except VendingError as e:
        return _error(e)


@sales_bp.patch("/<int:sale_id>")
def update_sale_route(sale_id: int):
    """Partial update (notes/metadata; user_id while draft)."""
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        sale = sale_service.update_sale(sale_id, data)
        return jsonify({"sale": sale.to_dict()}), 200

    except VendingError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<int:sale_id>")
def delete_sale_route(sale_id: int):
    try:
        sale_service.delete_sale(sale_id)
        return jsonify({"deleted": True}), 200

    except VendingError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to delete sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/reserve")
def reserve_sale_route(sale_id: int):
    try:
        sale = sale_service.reserve_sale(sale_id)
        return jsonify({"sale": sale.to_dict()}), 200

    except VendingError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to reserve stock")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/confirm-payment")
def confirm_payment_route(sale_id: int):
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        payment_ref = data.get("payment_ref")

        if not payment_ref:
            return jsonify({"error": "payment_ref required"}), 400

        sale = sale_service.confirm_payment(sale_id, payment_ref, data.get("ttl_minutes"))
        return jsonify({"sale": sale.to_dict()}), 200

    except VendingError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to confirm payment")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/confirm-pickup")
def confirm_pickup_route(sale_id: int):
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        code = data.get("code")

        if not code:
            return jsonify({"error": "code required"}), 400

        sale = sale_service.confirm_pickup(sale_id, code)
        return jsonify({"sale": sale.to_dict()}), 200

    except VendingError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to confirm pickup")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/cancel")
def cancel_sale_route(sale_id: int):
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        sale = sale_service.cancel_sale(sale_id, data.get("reason"))
        return jsonify({"sale": sale.to_dict()}), 200

    except VendingError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/users/<user_id>/active")
def active_sales_route(user_id: str):
    return jsonify({"sales": reporting_service.get_active_sales(user_id)}), 200


@sales_bp.get("/expiring")
def expiring_sales_route():
    minutes = _int_arg("minutes")
    if minutes == "invalid":
        return jsonify({"error": "minutes must be an integer"}), 400
    try:
        sales = reporting_service.get_sales_expiring_within(minutes or 10)
        return jsonify({"sales": sales}), 200
    except VendingError as e:
        return _error(e)


@sales_bp.get("/by-code/<code>")
def find_by_code_route(code: str):
    try:
        sale = reporting_service.find_by_pickup_code(code)
        if not sale:
            return jsonify({"error": "Sale not found"}), 404
        return jsonify({"sale": sale.to_dict()}), 200
    except VendingError as e:
        return _error(e)


@sales_bp.get("/stats")
def stats_route():
    return jsonify({"stats": reporting_service.get_sales_stats()}), 200


@sales_bp.post("/expire-sweep")
def expire_sweep_route():
    """Run one expiration pass on demand (the CLI runs it periodically)."""
    try:
        result = expiration_service.sweep_expired_sales()
        return jsonify({"sweep": result.to_dict()}), 200
    except Exception:
        current_app.logger.exception("Failed to run expiration sweep")
        return jsonify({"error": "Internal server error"}), 500
