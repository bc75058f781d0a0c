"""
API routes for attendance
Attendance history by course and date range
"""
from datetime import date

from flask import Blueprint, jsonify, request

from attendance_engine.errors import AttendanceEngineError
from app.globals import get_services
from app.utils.data_utils import engine_error_response, error_response, parse_date

attendance_api_bp = Blueprint('attendance_api', __name__, url_prefix='/api/attendance')


@attendance_api_bp.route('', methods=['GET'])
def api_query_attendance():
    """?course=&start=YYYY-MM-DD&end=YYYY-MM-DD"""
    course = (request.args.get('course') or '').strip() or None
    try:
        start = parse_date(request.args.get('start'), 'start')
        end = parse_date(request.args.get('end'), 'end')
    except ValueError as exc:
        return error_response(str(exc), 400)
    if start and end and start > end:
        return error_response('start must not be after end', 400)

    try:
        records = get_services().database.query_attendance(course, start, end)
    except AttendanceEngineError as exc:
        return engine_error_response(exc)
    return jsonify({'success': True, 'data': records, 'count': len(records)})


@attendance_api_bp.route('/today', methods=['GET'])
def api_today_attendance():
    course = (request.args.get('course') or '').strip() or None
    try:
        records = get_services().database.get_today_attendance(course)
    except AttendanceEngineError as exc:
        return engine_error_response(exc)
    return jsonify({
        'success': True,
        'date': date.today().isoformat(),
        'data': records,
        'count': len(records),
    })
