from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException
from backend.database.database import db
import logging

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = 400
    retryable = False
    
    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class BadRequest(ApiError):
    """Invalid request"""
    status_code = 400


class Unauthorized(ApiError):
    """Unauthorized"""
    status_code = 401


class PaymentRequired(ApiError):
    """An active subscription is required"""
    status_code = 402


class Forbidden(ApiError):
    """Access denied"""
    status_code = 403


class NotFound(ApiError):
    """Not found"""
    status_code = 404


class InvalidState(ApiError):
    """Operation not allowed in the current state"""
    status_code = 400


class NotConfigured(ApiError):
    """Billing is not configured"""
    status_code = 500


class TransientUpstream(ApiError):
    """Billing provider unavailable, please retry"""
    status_code = 502
    retryable = True


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(e):
        if e.status_code >= 500:
            logger.error('%s: %s', type(e).__name__, e.message)
        return jsonify({'error': e.message, 'retryable': e.retryable}), e.status_code
    
    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return jsonify({'error': e.description, 'retryable': False}), e.code
    
    @app.errorhandler(SQLAlchemyError)
    def handle_store_error(e):
        db.session.rollback()
        logger.exception('Database error')
        return jsonify({'error': 'Server error', 'retryable': False}), 500
    
    @app.errorhandler(Exception)
    def handle_exception(e):
        logger.exception('Unhandled exception')
        return jsonify({'error': 'Server error', 'retryable': False}), 500
