"""
App package initialization
Creates the Flask application and wires the attendance engine services
"""
import os
import time

from flask import Flask, g, request

import config
from attendance_engine.enrollment import EnrollmentService
from attendance_engine.errors import ModelNotReady
from attendance_engine.inference.descriptor import DescriptorExtractor
from attendance_engine.vision.camera_manager import DefaultCameraProvider
from database import DatabaseManager
from logging_config import api_logger, log_request_info, setup_logging
from services.photo_store import PhotoStore
from services.roster import DatabaseRosterProvider
from app.globals import AppServices, init_services
from app.models import EventBroadcaster, SessionRegistry


def _init_extractor(app, extractor):
    """Create the descriptor extractor and load the face model"""
    extractor = extractor or DescriptorExtractor(
        detection_model=app.config['FACE_DETECTION_MODEL'],
        num_jitters=app.config['FACE_ENCODING_JITTERS'],
        embedding_size=app.config['EMBEDDING_SIZE'],
    )
    if app.config['PRELOAD_FACE_MODEL'] and not extractor.is_ready():
        try:
            extractor.load_model()
            app.logger.info("[STARTUP] Face model loaded")
        except ModelNotReady as e:
            # Enrollment and sessions answer 503 until the model is available
            app.logger.warning(f"[STARTUP] Face model not available: {e}")
    return extractor


def _register_request_logging(app):
    @app.before_request
    def _log_request():
        if request.path.startswith('/api/'):
            g.request_started = time.perf_counter()
            log_request_info(request)

    @app.after_request
    def _log_response(response):
        started = g.pop('request_started', None)
        if started is not None:
            api_logger.log_response(request.endpoint, response.status_code, time.perf_counter() - started)
        return response


def create_app(overrides=None, *, extractor=None, camera_provider=None, photo_store=None):
    """
    Factory function for the Flask application

    Args:
        overrides: Config values replacing the ones read from the environment
        extractor: DescriptorExtractor to use instead of the face_recognition one
        camera_provider: Provider of capture devices (defaults to OpenCV)
        photo_store: Photo store to use instead of the on-disk one
    """
    app = Flask(__name__)

    app.config.from_object(config)
    if overrides:
        app.config.update(overrides)

    setup_logging(app, app.config['LOG_LEVEL'], app.config['LOG_DIR'])

    app.logger.info(f"[STARTUP] Working directory: {os.getcwd()}")
    app.logger.info(f"[STARTUP] Database path: {os.path.abspath(app.config['DATABASE_PATH'])}")

    database = DatabaseManager(app.config['DATABASE_PATH'])

    photo_store = photo_store or PhotoStore(
        app.config['PHOTO_STORE_DIR'],
        fetch_timeout=app.config['PHOTO_FETCH_TIMEOUT'],
        min_size=app.config['MIN_FILE_SIZE'],
        max_size=app.config['MAX_FILE_SIZE'],
        allowed_extensions=app.config['ALLOWED_EXTENSIONS'],
    )
    app.logger.info("[STARTUP] Photo store initialized")

    extractor = _init_extractor(app, extractor)
    roster_provider = DatabaseRosterProvider(database, embedding_size=app.config['EMBEDDING_SIZE'])
    broadcaster = EventBroadcaster(logger=app.logger)

    sessions = SessionRegistry(
        database=database,
        roster_provider=roster_provider,
        extractor=extractor,
        photo_store=photo_store,
        camera_provider=camera_provider or DefaultCameraProvider(),
        settings=app.config,
        broadcaster=broadcaster,
        logger=app.logger,
    )

    init_services(app, AppServices(
        database=database,
        photo_store=photo_store,
        extractor=extractor,
        roster_provider=roster_provider,
        enrollment=EnrollmentService(extractor, photo_store, database),
        event_broadcaster=broadcaster,
        sessions=sessions,
    ))
    app.logger.info("[STARTUP] All services initialized successfully")

    _register_request_logging(app)

    from app.routes import register_blueprints
    register_blueprints(app)

    return app
