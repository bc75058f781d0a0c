"""
Event Broadcaster - Server-Sent Events (SSE)
Handles real-time event broadcasting to connected clients
"""
import queue
import threading
import json
from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime


class EventBroadcaster:
    """Fan-out of attendance and session events to SSE clients"""

    def __init__(self, logger=None, queue_size: int = 50):
        self.clients: List[queue.Queue] = []
        self.clients_lock = threading.Lock()
        self.logger = logger
        self.queue_size = queue_size

    def add_client(self) -> queue.Queue:
        """Register a client and return its message queue"""
        client_queue = queue.Queue(maxsize=self.queue_size)

        with self.clients_lock:
            self.clients.append(client_queue)
            total = len(self.clients)

        if self.logger:
            self.logger.info(f"[SSE] New client connected. Total: {total}")

        return client_queue

    def remove_client(self, client_queue: queue.Queue):
        with self.clients_lock:
            if client_queue not in self.clients:
                return
            self.clients.remove(client_queue)
            remaining = len(self.clients)

        if self.logger:
            self.logger.info(f"[SSE] Client disconnected. Remaining: {remaining}")

    def broadcast_event(self, event_data: Dict[str, Any]):
        """
        Broadcast an event to every client

        Args:
            event_data: Dictionary with the event
                - type: Event type ('attendance_marked', 'session_updated', 'gallery_warning')
                - data: Event payload
                - timestamp: Optional, added when missing
        """
        if 'timestamp' not in event_data:
            event_data['timestamp'] = datetime.now().isoformat()

        message = self.format_sse_message(event_data)

        stalled_clients = []
        with self.clients_lock:
            for client_queue in self.clients:
                try:
                    client_queue.put_nowait(message)
                except queue.Full:
                    stalled_clients.append(client_queue)
                    if self.logger:
                        self.logger.warning("[SSE] Client queue full, dropping client")
            client_count = len(self.clients)

        for client_queue in stalled_clients:
            self.remove_client(client_queue)

        if self.logger and client_count:
            self.logger.debug(
                f"[SSE] Broadcast {event_data.get('type', 'unknown')} to {client_count} clients"
            )

    def format_sse_message(self, event_data: Dict[str, Any]) -> str:
        """event: <type>\\ndata: <json>\\n\\n"""
        event_type = event_data.get('type', 'message')
        return f"event: {event_type}\ndata: {json.dumps(event_data, default=str)}\n\n"

    def broadcast_attendance_marked(
        self,
        student_id: str,
        student_name: Optional[str],
        course: str,
        distance: Optional[float] = None,
        recorded_at: Optional[str] = None,
    ):
        self.broadcast_event({
            'type': 'attendance_marked',
            'data': {
                'student_id': student_id,
                'student_name': student_name,
                'course': course,
                'status': 'present',
                'distance': distance,
                'recorded_at': recorded_at,
            }
        })

    def broadcast_session_update(self, session_data: Optional[Dict]):
        self.broadcast_event({
            'type': 'session_updated',
            'data': session_data
        })

    def broadcast_gallery_warning(self, course: str, excluded: Iterable[Dict[str, Any]]):
        """Roster members that could not be added to the session gallery"""
        self.broadcast_event({
            'type': 'gallery_warning',
            'data': {
                'course': course,
                'excluded': list(excluded),
            }
        })

    def get_client_count(self) -> int:
        with self.clients_lock:
            return len(self.clients)
