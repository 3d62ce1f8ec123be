"""
Error taxonomy for the studio backend and the JSON error handlers that
render it.

Services raise these; the blueprints never build error responses for them
by hand. Batch loops catch the item-level ones and carry on, while
``DownstreamError`` (and raw Firestore API errors) abort the operation.
"""

import logging

from flask import jsonify
from google.api_core.exceptions import GoogleAPICallError, RetryError
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class StudioError(Exception):
    status_code = 500

    def __init__(self, message='', details=None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(StudioError):
    """Malformed or missing input."""
    status_code = 400


class NotFoundError(StudioError):
    status_code = 404


class ConflictError(StudioError):
    """A lesson with the same student/type/start/end already exists."""
    status_code = 409


class AmbiguousStateError(StudioError):
    """A student belongs to more than one active group.

    ``candidates`` holds the group ids in deterministic order so callers that
    choose to resolve the ambiguity can pick the first one.
    """
    status_code = 409

    def __init__(self, message='', candidates=None):
        super().__init__(message)
        self.candidates = list(candidates or [])


class DownstreamError(StudioError):
    """The document store is unavailable."""
    status_code = 503


def _error_response(message, status_code, details=None):
    payload = {'error': message}
    if details:
        payload['details'] = details
    return jsonify(payload), status_code


def register_error_handlers(app):
    @app.errorhandler(StudioError)
    def handle_studio_error(e):
        if isinstance(e, DownstreamError):
            logger.error('Store unavailable: %s', e.message)
            return _error_response('Service temporarily unavailable', 503)
        return _error_response(e.message or e.__class__.__name__, e.status_code, e.details)

    @app.errorhandler(GoogleAPICallError)
    @app.errorhandler(RetryError)
    def handle_store_error(e):
        logger.error('Firestore call failed: %s', e)
        return _error_response('Service temporarily unavailable', 503)

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return _error_response(e.description or e.name, e.code)

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        logger.exception('Unhandled error: %s', e)
        return _error_response('Server error', 500)
