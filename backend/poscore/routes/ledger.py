# Overview: Flask API routes for ledger operations; parses input and returns JSON responses.

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth, require_capability
from ..services import ledger_service
from ..services.ledger_service import AccountNotFound, LedgerError
from ..validation import ValidationError, optional_datetime
from .errors import error_response, json_body

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.post("/entries")
@require_auth
@require_capability("POST_JOURNAL")
def post_journal_entry_route():
    """
    Post a manual journal entry.

    Request body:
    {
        "description": "Opening balance",
        "entry_date": "2026-01-01T00:00:00Z",
        "lines": [
            {"account_code": "1000", "debit_pence": 10000},
            {"account_code": "3000", "credit_pence": 10000}
        ]
    }
    """
    data = json_body()
    try:
        entry = ledger_service.post_manual_entry(
            business_id=g.business_id,
            user_id=g.current_user.id,
            description=data.get("description"),
            lines=ledger_service.parse_journal_lines(data.get("lines")),
            entry_date=optional_datetime(data.get("entry_date"), "entry_date"),
        )
        return jsonify({"entry": entry.to_dict()}), 201

    except ValidationError as e:
        return error_response(e, 400)
    except AccountNotFound as e:
        return error_response(e, 400)
    except LedgerError as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to post journal entry")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/trial-balance")
@require_auth
@require_capability("VIEW_REPORTS")
def trial_balance_route():
    return jsonify(ledger_service.trial_balance(g.business_id)), 200
