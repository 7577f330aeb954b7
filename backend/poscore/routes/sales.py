# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/poscore/routes/sales.py
"""
Sales API Routes

DESIGN:
- POST /api/sales records a sale in one transaction (stock, ledger, drawer)
- A replayed external_ref returns the original invoice with 200 instead of 201
- Returns and voids are terminal; payments only pay down open balances

SECURITY:
- CREATE_SALE for sales and payments
- VOID_SALE for returns and voids
"""

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth, require_capability
from ..services import sales_service
from ..services.inventory_service import InventoryError
from ..services.ledger_service import LedgerError
from ..services.sales_service import InvalidReference, SaleError, SaleNotFound
from ..validation import ValidationError
from .errors import error_response, json_body


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_auth
@require_capability("CREATE_SALE")
def create_sale_route():
    """
    Record a sale.

    Request body:
    {
        "store_id": 1,
        "till_id": 1,
        "customer_id": null,
        "payment_status": "PAID",
        "lines": [{"product_id": 1, "unit_id": 1, "qty_in_unit": 2,
                   "discount_type": "NONE", "discount_value": null}],
        "payments": [{"method": "CASH", "amount_pence": 3000}],
        "order_discount_type": "NONE",
        "order_discount_value": null,
        "external_ref": "optional idempotency key"
    }
    """
    try:
        data = sales_service.parse_sale_payload(
            business_id=g.business_id,
            cashier_user_id=g.current_user.id,
            payload=json_body(),
        )
        result = sales_service.record_sale(data)
        status = 200 if result.replayed else 201
        return jsonify({"invoice": result.invoice.to_dict(), "replayed": result.replayed}), status

    except InvalidReference as e:
        return error_response(e, 400)
    except ValidationError as e:
        return error_response(e, 400)
    except (SaleError, InventoryError, LedgerError) as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:invoice_id>")
@require_auth
@require_capability("CREATE_SALE")
def get_sale_route(invoice_id: int):
    try:
        invoice = sales_service.get_invoice(g.business_id, invoice_id)
    except SaleNotFound as e:
        return error_response(e, 404)
    return jsonify({"invoice": invoice.to_dict()}), 200


@sales_bp.post("/<int:invoice_id>/payments")
@require_auth
@require_capability("CREATE_SALE")
def add_payment_route(invoice_id: int):
    """
    Pay down an UNPAID or PART_PAID invoice.

    Request body: {"method": "CASH", "amount_pence": 500, "reference": null}
    """
    data = json_body()
    try:
        invoice = sales_service.add_payment(
            business_id=g.business_id,
            invoice_id=invoice_id,
            method=data.get("method"),
            amount=data.get("amount_pence"),
            user_id=g.current_user.id,
            reference=data.get("reference"),
        )
        return jsonify({"invoice": invoice.to_dict()}), 200

    except SaleNotFound as e:
        return error_response(e, 404)
    except ValidationError as e:
        return error_response(e, 400)
    except (SaleError, LedgerError) as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to add sale payment")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:invoice_id>/return")
@require_auth
@require_capability("VOID_SALE")
def return_sale_route(invoice_id: int):
    """
    Fully return or void an invoice.

    Request body: {"type": "RETURN" | "VOID", "refund_method": "CASH", "reason": "..."}
    """
    data = json_body()
    try:
        sales_return = sales_service.create_sales_return(
            business_id=g.business_id,
            invoice_id=invoice_id,
            user_id=g.current_user.id,
            return_type=data.get("type") or "RETURN",
            refund_method=data.get("refund_method"),
            reason=data.get("reason"),
        )
        return jsonify({"sales_return": sales_return.to_dict()}), 201

    except SaleNotFound as e:
        return error_response(e, 404)
    except ValidationError as e:
        return error_response(e, 400)
    except (SaleError, InventoryError, LedgerError) as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to return sale")
        return jsonify({"error": "Internal server error"}), 500
