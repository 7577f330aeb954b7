# Overview: Shared JSON error bodies for API routes.

from flask import jsonify, request


def error_response(e: Exception, status: int):
    """
    JSON body for a service error: message, stable code and details.

    Service errors carry `code` and `details`; plain ValueErrors only have
    a message.
    """
    body = {"error": str(e)}
    code = getattr(e, "code", None)
    if code:
        body["code"] = code
    details = getattr(e, "details", None)
    if details:
        body["details"] = details
    return jsonify(body), status


def json_body() -> dict:
    """Request JSON as a dict; anything else becomes an empty dict."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
