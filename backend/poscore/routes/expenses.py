# Overview: Flask API routes for operating expenses; parses input and returns JSON responses.

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth, require_capability
from ..services import expense_service
from ..services.expense_service import ExpenseError
from ..services.ledger_service import LedgerError
from ..validation import ValidationError, optional_datetime, optional_int
from .errors import error_response, json_body


expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")


@expenses_bp.post("")
@require_auth
@require_capability("RECORD_EXPENSE")
def create_expense_route():
    """
    Record an expense.

    Request body:
    {
        "account_code": "6100",
        "amount_pence": 45000,
        "payment_method": "BANK",
        "store_id": 1,
        "description": "March rent",
        "occurred_at": null
    }
    """
    data = json_body()
    try:
        expense = expense_service.record_expense(
            business_id=g.business_id,
            account_code=data.get("account_code"),
            amount=data.get("amount_pence"),
            payment_method=data.get("payment_method") or "CASH",
            store_id=optional_int(data.get("store_id"), "store_id"),
            user_id=g.current_user.id,
            description=data.get("description"),
            occurred_at=optional_datetime(data.get("occurred_at"), "occurred_at"),
        )
        return jsonify({"expense": expense.to_dict()}), 201

    except ValidationError as e:
        return error_response(e, 400)
    except (ExpenseError, LedgerError) as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to record expense")
        return jsonify({"error": "Internal server error"}), 500
