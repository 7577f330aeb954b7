# Overview: Flask API routes for supplier purchases; parses input and returns JSON responses.

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth, require_capability
from ..services import purchase_service
from ..services.inventory_service import InventoryError
from ..services.ledger_service import LedgerError
from ..services.purchase_service import PurchaseError
from ..validation import ValidationError
from .errors import error_response, json_body


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


@purchases_bp.post("")
@require_auth
@require_capability("RECEIVE_STOCK")
def create_purchase_route():
    """
    Receive supplier stock.

    Request body:
    {
        "store_id": 1,
        "supplier_name": "Acme Wholesale",
        "supplier_invoice_ref": "INV-889",
        "lines": [{"product_id": 1, "unit_id": 2, "qty_in_unit": 3, "unit_cost_pence": 2400}],
        "payments": [{"method": "BANK", "amount_pence": 5000}]
    }
    """
    try:
        data = purchase_service.parse_purchase_payload(
            business_id=g.business_id,
            user_id=g.current_user.id,
            payload=json_body(),
        )
        invoice = purchase_service.record_purchase(data)
        return jsonify({"purchase": invoice.to_dict()}), 201

    except ValidationError as e:
        return error_response(e, 400)
    except (PurchaseError, InventoryError, LedgerError) as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to record purchase")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.get("/<int:purchase_id>")
@require_auth
@require_capability("RECEIVE_STOCK")
def get_purchase_route(purchase_id: int):
    try:
        invoice = purchase_service.get_purchase(g.business_id, purchase_id)
    except PurchaseError as e:
        return error_response(e, 404)
    return jsonify({"purchase": invoice.to_dict()}), 200
