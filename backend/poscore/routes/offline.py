# Overview: Flask API routes for offline terminal sync; parses input and returns JSON responses.

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth, require_capability
from ..services import sync_service
from ..validation import ValidationError
from .errors import error_response, json_body


offline_bp = Blueprint("offline", __name__, url_prefix="/api/offline")


@offline_bp.post("/sync")
@require_auth
@require_capability("SYNC_OFFLINE")
def sync_offline_route():
    """
    Replay sales queued while a terminal was offline.

    Request body:
    {
        "payloads": [
            {"id": "abc", "store_id": 1, "till_id": 1, "lines": [...],
             "payments": [...], "created_at": "2026-01-01T10:00:00Z"}
        ]
    }

    Always 200 once the batch is accepted; per-payload failures are listed
    under "failed" so the terminal can keep or drop each queued sale.
    """
    data = json_body()
    try:
        result = sync_service.sync_offline_batch(
            business_id=g.business_id,
            actor_user_id=g.current_user.id,
            payloads=data.get("payloads"),
        )
        return jsonify(result.to_dict()), 200

    except ValidationError as e:
        return error_response(e, 400)
    except Exception:
        current_app.logger.exception("Failed to sync offline batch")
        return jsonify({"error": "Internal server error"}), 500
