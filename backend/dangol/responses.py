# Overview: Request parsing and error rendering shared by the API blueprints.

from __future__ import annotations

from flask import current_app, jsonify, request

from .errors import DealEngineError, ValidationError


def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def error_response(exc: DealEngineError):
    return jsonify(exc.to_dict()), exc.status_code


def server_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"success": False, "error": "internal_error", "message": "Internal server error"}), 500
