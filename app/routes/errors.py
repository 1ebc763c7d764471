"""
JSON error responses shared by the API blueprints.

  InvalidTransition → 409    RunNotFound → 404    ValueError → 400
  anything else     → 500
"""
import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

from app.pipeline.state import InvalidTransition
from app.services.db import RunNotFound

logger = logging.getLogger('routes.errors')


def error_response(message, status):
    return jsonify({'error': message}), status


def register_error_handlers(bp):
    @bp.errorhandler(InvalidTransition)
    def _conflict(e):
        return error_response(str(e), 409)

    @bp.errorhandler(RunNotFound)
    def _not_found(e):
        return error_response(str(e), 404)

    @bp.errorhandler(ValueError)
    def _bad_request(e):
        return error_response(str(e), 400)

    @bp.errorhandler(Exception)
    def _server_error(e):
        if isinstance(e, HTTPException):
            return error_response(e.description, e.code)
        logger.error("Unhandled error in %s", bp.name, exc_info=True)
        return error_response(str(e), 500)
