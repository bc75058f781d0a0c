"""
API routes for Server-Sent Events (SSE)
Real-time attendance and session events
"""
from flask import Blueprint, Response, current_app
import json
import queue

from app.globals import get_services

events_api_bp = Blueprint('events_api', __name__, url_prefix='/api/events')


@events_api_bp.route('/stream')
def api_events_stream():
    """Server-Sent Events stream"""
    services = get_services()
    broadcaster = services.event_broadcaster
    heartbeat = current_app.config.get('SSE_HEARTBEAT_SECONDS', 30)
    client_queue = broadcaster.add_client()
    initial_sessions = services.sessions.snapshots()

    def event_stream():
        try:
            yield f"data: {json.dumps({'type': 'connected'})}\n\n"
            for snapshot in initial_sessions:
                yield broadcaster.format_sse_message({'type': 'session_updated', 'data': snapshot})

            while True:
                try:
                    yield client_queue.get(timeout=heartbeat)
                except queue.Empty:
                    # Keep the connection alive
                    yield f"data: {json.dumps({'type': 'heartbeat'})}\n\n"
        finally:
            broadcaster.remove_client(client_queue)

    return Response(event_stream(), mimetype='text/event-stream')
