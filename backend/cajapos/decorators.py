# Overview: Request decorators for API routes; JSON body checks and error-to-response mapping.

from functools import wraps
from flask import request, jsonify, current_app
from sqlalchemy.exc import SQLAlchemyError

from .errors import PosError, Result, classify_persistence_error
from .extensions import db


def error_response(error: PosError):
    """Serialize a structured failure with its HTTP status."""
    return jsonify(error.to_dict()), error.http_status


def result_response(result: Result, serialize, success_status: int = 200):
    """
    Turn a service Result into a Flask response.

    `serialize` maps the success value (plus result.extra) to a JSON dict.
    """
    if not result.success:
        return error_response(result.error)
    return jsonify(serialize(result.value, **result.extra)), success_status


def require_json(f):
    """
    Require a JSON object body.

    Returns 400 when the body is missing or is not an object; the parsed
    body is available as request.get_json() inside the view.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"code": "VALIDATION_ERROR", "error": "JSON object body required", "details": {}}), 400
        return f(*args, **kwargs)

    return decorated_function


def handle_pos_errors(operation: str):
    """
    Map exceptions escaping a view to JSON.

    - PosError: its own code and status
    - storage failures: 503 with an operator hint
    - anything else: logged with traceback, 500
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except PosError as exc:
                db.session.rollback()
                return error_response(exc)
            except SQLAlchemyError as exc:
                db.session.rollback()
                return error_response(classify_persistence_error(exc, operation))
            except Exception:
                db.session.rollback()
                current_app.logger.exception("Failed to %s", operation.replace("_", " "))
                return jsonify({"code": "INTERNAL_ERROR", "error": "Internal server error", "details": {}}), 500

        return decorated_function

    return decorator
