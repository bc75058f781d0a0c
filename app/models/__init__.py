"""
Models package
Application-level state: SSE broadcasting and per-course sessions
"""
from .event_broadcaster import EventBroadcaster
from .session_registry import SessionRegistry

__all__ = [
    'EventBroadcaster',
    'SessionRegistry',
]
