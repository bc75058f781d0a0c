"""
Data utilities
Request parsing and error responses shared by the API blueprints
"""
import base64
import binascii
from datetime import date, datetime

from flask import current_app, jsonify, request

from attendance_engine.errors import (
    CameraUnavailable,
    EmptyGallery,
    ModelNotReady,
    NoFaceDetected,
    PartialGalleryBuild,
    PersistenceFailure,
    PhotoStoreError,
    SessionStateError,
    StudentAlreadyEnrolled,
)

# Most specific first
ERROR_STATUS = (
    (NoFaceDetected, 422),
    (StudentAlreadyEnrolled, 409),
    (PartialGalleryBuild, 409),
    (EmptyGallery, 409),
    (SessionStateError, 409),
    (PhotoStoreError, 400),
    (ModelNotReady, 503),
    (CameraUnavailable, 503),
    (PersistenceFailure, 503),
)


def get_request_data():
    """Request data from JSON or form."""
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def parse_date(value, field_name='date'):
    """YYYY-MM-DD -> date; None/empty -> None; anything else -> ValueError."""
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {field_name} '{value}', expected YYYY-MM-DD")


def get_image_bytes(data):
    """Photo from a multipart 'photo' file or a base64 'image_data' field."""
    file_storage = request.files.get('photo')
    if file_storage and file_storage.filename:
        return file_storage.read()

    image_data = data.get('image_data')
    if not image_data:
        raise ValueError('Missing image data')
    if ',' in image_data:
        image_data = image_data.split(',', 1)[1]
    try:
        return base64.b64decode(image_data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError('Invalid image: cannot decode base64 data') from exc


def error_response(message, status_code, **extra):
    payload = {'success': False, 'message': message}
    payload.update(extra)
    return jsonify(payload), status_code


def engine_error_response(exc):
    """Map an engine exception to a JSON error response."""
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            extra = {}
            if isinstance(exc, PartialGalleryBuild):
                extra['excluded'] = [
                    {'identity': item.identity, 'reason': item.reason, 'detail': item.detail}
                    for item in exc.exclusions
                ]
            if status_code >= 500:
                current_app.logger.warning(f"[API] {type(exc).__name__}: {exc}")
            return error_response(str(exc), status_code, error=type(exc).__name__, **extra)
    current_app.logger.error(f"[API] Unhandled engine error: {exc}", exc_info=True)
    return error_response(str(exc), 500, error=type(exc).__name__)
