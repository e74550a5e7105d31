from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from medstock.extensions import db

bp = Blueprint("errors", __name__)


@bp.app_errorhandler(Exception)
def handle_exception(error: Exception):
    # Allow HTTP errors that are not 500 to propagate to their default handlers.
    if isinstance(error, HTTPException) and error.code != 500:
        return error

    root_error = getattr(error, "original_exception", None) or error
    current_app.logger.exception("Unhandled exception", exc_info=root_error)
    db.session.rollback()

    error_message = "Internal Server Error"
    if isinstance(error, HTTPException) and error.description:
        error_message = error.description
    elif str(error):
        error_message = str(error)

    return (
        jsonify(
            {
                "error": error_message,
                "endpoint": request.endpoint,
                "path": request.path,
            }
        ),
        500,
    )
