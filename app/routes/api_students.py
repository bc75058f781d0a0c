"""
API routes for students
Enrollment, photo replacement and course listing
"""
from flask import Blueprint, current_app, jsonify, request

from attendance_engine.errors import AttendanceEngineError
from app.globals import get_services
from app.utils.data_utils import (
    engine_error_response,
    error_response,
    get_image_bytes,
    get_request_data,
)

student_api_bp = Blueprint('student_api', __name__, url_prefix='/api')


@student_api_bp.route('/students', methods=['GET'])
def get_students():
    """Students of a course (?course=...)"""
    course = (request.args.get('course') or '').strip()
    if not course:
        return error_response('Missing course', 400)
    try:
        services = get_services()
        students = services.database.list_public_students(course)
        return jsonify({'success': True, 'data': students})
    except AttendanceEngineError as exc:
        return engine_error_response(exc)


@student_api_bp.route('/students', methods=['POST'])
def create_student():
    """Enroll a student from one photo (multipart 'photo' or base64 'image_data')"""
    data = get_request_data()
    student_id = (data.get('student_id') or '').strip()
    full_name = (data.get('full_name') or '').strip()
    course = (data.get('course') or '').strip()

    if not student_id or not full_name or not course:
        return error_response('student_id, full_name and course are required', 400)

    try:
        image_bytes = get_image_bytes(data)
    except ValueError as exc:
        return error_response(str(exc), 400)

    current_app.logger.info(f"[Enrollment] Request for {student_id} ({full_name}) in {course}")
    try:
        student = get_services().enrollment.enroll(student_id, full_name, course, image_bytes)
    except AttendanceEngineError as exc:
        return engine_error_response(exc)
    except ValueError as exc:
        return error_response(str(exc), 400)

    return jsonify({
        'success': True,
        'message': 'Student enrolled',
        'student': student,
    }), 201


@student_api_bp.route('/students/<student_id>', methods=['GET'])
def get_student(student_id):
    try:
        student = get_services().database.get_public_student(student_id)
    except AttendanceEngineError as exc:
        return engine_error_response(exc)
    if student is None:
        return error_response(f'Student {student_id} not found', 404)
    return jsonify({'success': True, 'student': student})


@student_api_bp.route('/students/<student_id>/photo', methods=['PUT'])
def replace_student_photo(student_id):
    """Replace the enrollment photo and embedding"""
    data = get_request_data()
    try:
        image_bytes = get_image_bytes(data)
    except ValueError as exc:
        return error_response(str(exc), 400)

    try:
        student = get_services().enrollment.replace_photo(student_id, image_bytes)
    except KeyError:
        return error_response(f'Student {student_id} not found', 404)
    except AttendanceEngineError as exc:
        return engine_error_response(exc)

    return jsonify({'success': True, 'message': 'Photo replaced', 'student': student})


@student_api_bp.route('/courses', methods=['GET'])
def get_courses():
    try:
        courses = get_services().roster_provider.list_courses()
    except AttendanceEngineError as exc:
        return engine_error_response(exc)
    return jsonify({'success': True, 'data': courses})
