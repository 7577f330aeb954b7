# backend/poscore/routes/transfers.py
"""
Inter-store stock transfer API routes.

PENDING -> COMPLETED (approved with a manager PIN) or PENDING -> CANCELLED.
"""
from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth, require_capability
from ..services import transfer_service
from ..services.inventory_service import InventoryError
from ..services.transfer_service import InvalidPin, TransferError, TransferLineInput, TransferNotFound
from ..validation import ValidationError
from .errors import error_response, json_body


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


@transfers_bp.route("", methods=["POST"])
@require_auth
@require_capability("REQUEST_TRANSFER")
def request_transfer():
    """
    Request a transfer. No stock moves until approval.

    Request body:
    {
        "from_store_id": int,
        "to_store_id": int,
        "lines": [{"product_id": int, "qty_base": int}],
        "reason": str (optional)
    }

    Returns:
        201: Transfer created
        400: Invalid request
        403: Forbidden
        409: Store or product not usable
    """
    data = json_body()
    raw_lines = data.get("lines")
    if not isinstance(raw_lines, list):
        return jsonify({"error": "lines must be a list"}), 400

    try:
        lines = [
            TransferLineInput(product_id=line.get("product_id"), qty_base=line.get("qty_base"))
            for line in raw_lines
            if isinstance(line, dict)
        ]
        if len(lines) != len(raw_lines):
            raise ValidationError("Each line must be an object")
        transfer = transfer_service.request_stock_transfer(
            business_id=g.business_id,
            requested_by_user_id=g.current_user.id,
            from_store_id=data.get("from_store_id"),
            to_store_id=data.get("to_store_id"),
            lines=lines,
            reason=data.get("reason"),
        )
        return jsonify({"transfer": transfer.to_dict()}), 201

    except ValidationError as e:
        return error_response(e, 400)
    except TransferError as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to request transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.route("/<int:transfer_id>", methods=["GET"])
@require_auth
@require_capability("REQUEST_TRANSFER")
def get_transfer(transfer_id: int):
    try:
        transfer = transfer_service.get_transfer(g.business_id, transfer_id)
    except TransferNotFound as e:
        return error_response(e, 404)
    return jsonify({"transfer": transfer.to_dict()}), 200


@transfers_bp.route("/<int:transfer_id>/approve", methods=["POST"])
@require_auth
@require_capability("APPROVE_TRANSFER")
def approve_transfer(transfer_id: int):
    """
    Approve and complete a pending transfer.

    Request body: {"manager_pin": "1234"}

    Returns:
        200: Transfer completed
        403: PIN not recognised
        404: Transfer not found
        409: Not pending, or insufficient stock at the source
    """
    data = json_body()
    try:
        transfer = transfer_service.approve_stock_transfer(
            business_id=g.business_id,
            transfer_id=transfer_id,
            manager_pin=str(data.get("manager_pin") or ""),
        )
        return jsonify({"transfer": transfer.to_dict()}), 200

    except InvalidPin as e:
        return error_response(e, 403)
    except TransferNotFound as e:
        return error_response(e, 404)
    except (TransferError, InventoryError) as e:
        return error_response(e, 409)
    except ValidationError as e:
        return error_response(e, 400)
    except Exception:
        current_app.logger.exception("Failed to approve transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.route("/<int:transfer_id>/cancel", methods=["POST"])
@require_auth
@require_capability("APPROVE_TRANSFER")
def cancel_transfer(transfer_id: int):
    """
    Cancel a pending transfer.

    Request body: {"reason": str (optional)}
    """
    data = json_body()
    try:
        transfer = transfer_service.cancel_stock_transfer(
            business_id=g.business_id,
            transfer_id=transfer_id,
            user_id=g.current_user.id,
            reason=data.get("reason"),
        )
        return jsonify({"transfer": transfer.to_dict()}), 200

    except TransferNotFound as e:
        return error_response(e, 404)
    except TransferError as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to cancel transfer")
        return jsonify({"error": "Internal server error"}), 500
