# Overview: Flask API routes for till shifts and cash drawer reconciliation; parses input and returns JSON responses.

# backend/poscore/routes/shifts.py
"""
Shift API Routes

WHY: Cashier accountability. Every shift starts from a counted float and
ends with a counted drawer, approved by a manager PIN or an owner override.

DESIGN:
- Shift lifecycle: OPEN -> CLOSED (immutable once closed)
- Expected cash moves only through cash drawer entries
- Paid-outs take expense cash straight out of the drawer

SECURITY:
- MANAGE_SHIFT to open, close and read shifts
- RECORD_EXPENSE for paid-outs
- Closing additionally needs a manager PIN or owner password in the body
"""

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth, require_capability
from ..services import shift_service
from ..services.expense_service import ExpenseError
from ..services.ledger_service import LedgerError
from ..services.shift_service import (
    InvalidApproval,
    OwnerOverrideApproval,
    PinApproval,
    ShiftError,
    ShiftNotFound,
)
from ..validation import ValidationError
from .errors import error_response, json_body


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api")


def _approval_from_body(data: dict):
    """
    Build the closing approval from the request body.

    {"manager_pin": "1234"} or
    {"owner_override": {"owner_password": "...", "reason_code": "...", "justification": "..."}}
    """
    override = data.get("owner_override")
    if isinstance(override, dict):
        return OwnerOverrideApproval(
            owner_password=str(override.get("owner_password") or ""),
            reason_code=str(override.get("reason_code") or "").strip().upper(),
            justification=str(override.get("justification") or ""),
        )
    if data.get("manager_pin") is not None:
        return PinApproval(manager_pin=str(data.get("manager_pin")))
    return None


@shifts_bp.post("/tills/<int:till_id>/shifts")
@require_auth
@require_capability("MANAGE_SHIFT")
def open_shift_route(till_id: int):
    """
    Open a shift on a till.

    Request body: {"opening_cash_pence": 5000}
    """
    data = json_body()
    try:
        shift = shift_service.open_shift(
            business_id=g.business_id,
            till_id=till_id,
            user_id=g.current_user.id,
            opening_cash_pence=data.get("opening_cash_pence"),
        )
        return jsonify({"shift": shift.to_dict()}), 201

    except ShiftNotFound as e:
        return error_response(e, 404)
    except ValidationError as e:
        return error_response(e, 400)
    except ShiftError as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to open shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/shifts/<int:shift_id>/close")
@require_auth
@require_capability("MANAGE_SHIFT")
def close_shift_route(shift_id: int):
    """
    Close a shift against the counted drawer.

    Request body:
    {
        "actual_cash_pence": 16500,
        "manager_pin": "1234",
        "variance_reason_code": "CHANGE_ERROR",
        "variance_reason": "Gave too much change",
        "notes": null
    }
    """
    data = json_body()
    try:
        shift = shift_service.close_shift(
            business_id=g.business_id,
            shift_id=shift_id,
            actual_cash_pence=data.get("actual_cash_pence"),
            approval=_approval_from_body(data),
            actor_user_id=g.current_user.id,
            variance_reason_code=data.get("variance_reason_code"),
            variance_reason=data.get("variance_reason"),
            notes=data.get("notes"),
        )
        return jsonify({"shift": shift.to_dict(), "closure": shift.closure.to_dict()}), 200

    except ShiftNotFound as e:
        return error_response(e, 404)
    except InvalidApproval as e:
        return error_response(e, 403)
    except ValidationError as e:
        return error_response(e, 400)
    except ShiftError as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to close shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/shifts/<int:shift_id>/paid-outs")
@require_auth
@require_capability("RECORD_EXPENSE")
def paid_out_route(shift_id: int):
    """
    Pay an expense out of the drawer of an open shift.

    Request body: {"amount_pence": 1500, "expense_account_code": "6500", "reason": "Taxi"}
    """
    data = json_body()
    try:
        shift = shift_service.get_shift(g.business_id, shift_id)
        if shift.status != "OPEN":
            return jsonify({"error": "Shift is not open", "code": "ALREADY_CLOSED"}), 409
        expense = shift_service.record_paid_out(
            business_id=g.business_id,
            till_id=shift.till_id,
            amount=data.get("amount_pence"),
            expense_account_code=data.get("expense_account_code"),
            reason=data.get("reason"),
            user_id=g.current_user.id,
        )
        return jsonify({"expense": expense.to_dict()}), 201

    except ShiftNotFound as e:
        return error_response(e, 404)
    except ValidationError as e:
        return error_response(e, 400)
    except (ShiftError, ExpenseError, LedgerError) as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to record paid-out")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/shifts/<int:shift_id>")
@require_auth
@require_capability("MANAGE_SHIFT")
def get_shift_route(shift_id: int):
    try:
        summary = shift_service.get_shift_summary(g.business_id, shift_id)
    except ShiftNotFound as e:
        return error_response(e, 404)
    return jsonify({"shift": summary}), 200
