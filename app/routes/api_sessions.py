"""
API routes for recognition sessions
Start, pause, resume, stop and close the attendance session of a course
"""
from flask import Blueprint, current_app, jsonify

from attendance_engine.errors import AttendanceEngineError
from app.globals import get_services
from app.utils.data_utils import engine_error_response, error_response, get_request_data

session_api_bp = Blueprint('session_api', __name__, url_prefix='/api/sessions')


def _not_found(course):
    return error_response(f'No session for course {course}', 404)


@session_api_bp.route('', methods=['GET'])
def list_sessions():
    return jsonify({'success': True, 'data': get_services().sessions.snapshots()})


@session_api_bp.route('/<course>', methods=['GET'])
def get_session(course):
    """Session snapshot plus the per-student status board"""
    services = get_services()
    session = services.sessions.get(course)
    if session is None:
        return _not_found(course)
    try:
        roster = services.roster_provider.list_students(course)
        board = session.ledger.status_board(roster)
    except AttendanceEngineError as exc:
        return engine_error_response(exc)
    return jsonify({'success': True, 'session': session.snapshot(), 'students': board})


@session_api_bp.route('/<course>/start', methods=['POST'])
def start_session(course):
    data = get_request_data()
    try:
        session, build = get_services().sessions.start(course, opened_by=data.get('opened_by'))
    except AttendanceEngineError as exc:
        return engine_error_response(exc)

    warning = build.partial_failure()
    current_app.logger.info(f"[Sessions] Started {course}")
    return jsonify({
        'success': True,
        'session': session.snapshot(),
        'gallery': build.describe(),
        'warning': str(warning) if warning else None,
    })


def _transition(course, action):
    try:
        session = getattr(get_services().sessions, action)(course)
    except KeyError:
        return _not_found(course)
    except AttendanceEngineError as exc:
        return engine_error_response(exc)
    return jsonify({'success': True, 'session': session.snapshot()})


@session_api_bp.route('/<course>/pause', methods=['POST'])
def pause_session(course):
    return _transition(course, 'pause')


@session_api_bp.route('/<course>/resume', methods=['POST'])
def resume_session(course):
    return _transition(course, 'resume')


@session_api_bp.route('/<course>/stop', methods=['POST'])
def stop_session(course):
    return _transition(course, 'stop')


@session_api_bp.route('/<course>/close', methods=['POST'])
def close_session(course):
    """Stop sampling and record everyone not recognised as absent"""
    try:
        session, absentees = get_services().sessions.close(course)
    except AttendanceEngineError as exc:
        return engine_error_response(exc)
    return jsonify({
        'success': True,
        'session': session.snapshot(),
        'absent': [record.to_dict() for record in absentees],
    })
