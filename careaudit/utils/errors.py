"""JSON error envelope shared by every endpoint.

Body shape::

    {"error": "<message>", "code": "ERR_...", "details": {...}, "request_id": "..."}

``details`` and ``request_id`` are omitted when empty.

Usage
-----
    from careaudit.utils.errors import api_error, error_for_exception, E

    return api_error(E.NOT_FOUND, "Action plan not found")
    return error_for_exception(exc)   # service exception -> response
"""

from __future__ import annotations

from flask import g, has_request_context, jsonify

from careaudit.core.exceptions import ConcurrencyError, InvalidStateError, NotFoundError, ValidationError


class E:
    """Machine-readable error codes."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"   # 422, a field is missing
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"     # 422, a field is malformed
    NOT_FOUND = "ERR_NOT_FOUND"                       # 404
    CONFLICT_STATE = "ERR_CONFLICT_STATE"             # 409, e.g. run already completed
    CONCURRENCY = "ERR_CONCURRENCY"                   # 500, uniqueness guard raced
    DATABASE = "ERR_DATABASE"                         # 500
    INTERNAL = "ERR_INTERNAL"                         # 500


_STATUS_BY_CODE: dict[str, int] = {
    E.VALIDATION_REQUIRED: 422,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.CONCURRENCY: 500,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(response, status)`` for ``code``.

    ``status`` overrides the code's default; unknown codes fall back to 400.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    if has_request_context() and getattr(g, "request_id", None):
        body["request_id"] = g.request_id
    return jsonify(body), status or _STATUS_BY_CODE.get(code, 400)


def error_for_exception(exc: Exception):
    """Translate a service-layer exception into the JSON envelope.

    A ValidationError whose details mark any field ``"required"`` maps to
    VALIDATION_REQUIRED, every other one to VALIDATION_INVALID. The message of
    a ConcurrencyError is not echoed to the client.
    """
    if isinstance(exc, NotFoundError):
        return api_error(E.NOT_FOUND, str(exc), details={"resource": exc.resource})
    if isinstance(exc, ValidationError):
        code = E.VALIDATION_REQUIRED if "required" in exc.details.values() else E.VALIDATION_INVALID
        return api_error(code, str(exc), details=exc.details)
    if isinstance(exc, InvalidStateError):
        return api_error(E.CONFLICT_STATE, str(exc), details={"current_status": exc.current_status})
    if isinstance(exc, ConcurrencyError):
        return api_error(E.CONCURRENCY, "Concurrent modification detected")
    return api_error(E.INTERNAL, "Internal server error")
