"""General helper utilities."""
from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Callable, Dict, Tuple

from flask import Flask, jsonify, request
from flask_login import current_user
from werkzeug.datastructures import MultiDict

from app.models import UserRole
from app.services.errors import ApprovalError

logger = logging.getLogger(__name__)

JsonView = Callable[..., Any]


def json_response(payload: Any, status: int = 200):
    """Return a JSON response with status code."""
    return jsonify(payload), status


def role_required(*roles: UserRole):
    """Restrict a route to one or more roles."""
    def decorator(view_func: JsonView) -> JsonView:
        @wraps(view_func)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                return json_response({"error": "Authentication required."}, status=401)
            if current_user.role not in roles:
                return json_response({"error": "Insufficient permissions."}, status=403)
            return view_func(*args, **kwargs)

        return wrapped

    return decorator


def request_payload() -> Dict[str, Any]:
    """JSON body or form fields of the current request."""
    if request.is_json:
        payload = request.get_json(silent=True)
        return payload if isinstance(payload, dict) else {}
    return request.form.to_dict()


def page_args() -> Tuple[int, int]:
    """``page`` and ``limit`` query arguments of the current request."""
    return request.args.get("page", 1, type=int), request.args.get("limit", 10, type=int)


def form_data(payload: Dict[str, Any]) -> MultiDict:
    """Flatten scalar payload values into form data WTForms can process."""
    data = MultiDict()
    for key, value in payload.items():
        if value is None or isinstance(value, (dict, list, tuple)):
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        data.add(key, str(value))
    return data


def form_error_response(form):
    """400 response listing the first error of every invalid field."""
    errors = {name: messages[0] for name, messages in form.errors.items() if messages}
    return json_response({"error": "Invalid input.", "fields": errors}, status=400)


def register_error_handlers(app: Flask) -> None:
    """Render approval errors as JSON with their HTTP status."""

    @app.errorhandler(ApprovalError)
    def handle_approval_error(error: ApprovalError):
        if error.status_code >= 500:
            logger.error("Approval request failed: %s", error.message)
        return json_response({"error": error.message}, status=error.status_code)
