"""
Care Audit Service
Blueprint registry and shared request helpers.
"""

import logging

from flask import jsonify, request

from careaudit.core.exceptions import ConcurrencyError, InvalidStateError, NotFoundError, ValidationError
from careaudit.models import db
from careaudit.utils.errors import E, api_error, error_for_exception

logger = logging.getLogger(__name__)


def current_user(data=None):
    """Return (user_id, display_name) of the caller.

    Identity comes from the ``X-User-Email`` / ``X-User-Name`` headers set by
    the surrounding application, falling back to ``user_email`` /
    ``user_name`` in the JSON body. Empty strings when absent.
    """
    data = data or {}
    user_id = request.headers.get("X-User-Email") or data.get("user_email") or ""
    name = request.headers.get("X-User-Name") or data.get("user_name") or ""
    return user_id.strip(), name.strip()


def json_body():
    return request.get_json(silent=True) or {}


def commit_or_error():
    """Commit the request's unit of work. Returns an error response or None."""
    try:
        db.session.commit()
    except Exception:
        logger.exception("Database commit failed")
        db.session.rollback()
        return api_error(E.DATABASE, "Database error")
    return None


def register_error_handlers(bp):
    """Map the service exception hierarchy to JSON responses on ``bp``."""

    @bp.errorhandler(NotFoundError)
    @bp.errorhandler(ValidationError)
    @bp.errorhandler(InvalidStateError)
    def _handle_client_error(error):
        db.session.rollback()
        return error_for_exception(error)

    @bp.errorhandler(ConcurrencyError)
    def _handle_concurrency(error):
        db.session.rollback()
        logger.error("Concurrency guard violated in %s: %s", request.endpoint, error)
        return error_for_exception(error)


def ok(payload, status=200):
    """Commit, then return ``payload`` as JSON (or the commit error)."""
    err = commit_or_error()
    if err:
        return err
    return jsonify(payload), status
