"""
Application services
Service instances shared by the blueprints of one Flask app
"""
from dataclasses import dataclass

from flask import current_app

EXTENSION_KEY = 'attendance_engine'


@dataclass
class AppServices:
    database: object
    photo_store: object
    extractor: object
    roster_provider: object
    enrollment: object
    event_broadcaster: object
    sessions: object


def init_services(app, services):
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services(app=None) -> AppServices:
    """Services of the given app, or of the current app context"""
    app = app or current_app
    return app.extensions[EXTENSION_KEY]
