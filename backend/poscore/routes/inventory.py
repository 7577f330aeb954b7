# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

from flask import Blueprint, jsonify, g, current_app, request

from ..decorators import require_auth, require_capability
from ..extensions import db
from ..models import Product, Store
from ..services import inventory_service
from ..services.inventory_service import InventoryError
from ..services.ledger_service import LedgerError
from ..validation import ValidationError
from .errors import error_response, json_body


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/adjustments")
@require_auth
@require_capability("ADJUST_STOCK")
def create_adjustment_route():
    """
    Manual stock correction.

    Request body:
    {
        "store_id": 1,
        "product_id": 1,
        "unit_id": 1,
        "qty_in_unit": -2,
        "reason": "Damaged",
        "allow_negative": false
    }

    allow_negative lets a write-off take the balance below zero; only
    owners may pass it.
    """
    data = json_body()
    allow_negative = bool(data.get("allow_negative"))
    if allow_negative and g.current_user.role != "OWNER":
        return jsonify({"error": "Only an owner may authorise negative stock"}), 403

    try:
        adjustment = inventory_service.create_stock_adjustment(
            business_id=g.business_id,
            store_id=data.get("store_id"),
            product_id=data.get("product_id"),
            unit_id=data.get("unit_id"),
            qty_in_unit=data.get("qty_in_unit"),
            reason=data.get("reason"),
            user_id=g.current_user.id,
            allow_negative=allow_negative,
        )
        return jsonify({"adjustment": adjustment.to_dict()}), 201

    except ValidationError as e:
        return error_response(e, 400)
    except (InventoryError, LedgerError) as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to create stock adjustment")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/<int:store_id>/<int:product_id>")
@require_auth
@require_capability("CREATE_SALE")
def inventory_summary_route(store_id: int, product_id: int):
    store = db.session.query(Store).filter_by(id=store_id, business_id=g.business_id).first()
    if not store:
        return jsonify({"error": "Store not found"}), 404
    product = db.session.query(Product).filter_by(id=product_id, business_id=g.business_id).first()
    if not product:
        return jsonify({"error": "Product not found"}), 404

    limit = request.args.get("limit", default=20, type=int)
    limit = max(1, min(limit, 200))
    try:
        summary = inventory_service.get_inventory_summary(store.id, product.id, movement_limit=limit)
    except ValidationError as e:
        return error_response(e, 400)
    return jsonify(summary), 200
