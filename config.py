# config.py - Configuration and constants for the attendance engine

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default='0'):
    return os.getenv(name, default).strip().lower() in {'1', 'true', 'yes', 'on'}


# Flask app configuration
SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
MAX_CONTENT_LENGTH = int(os.getenv('MAX_CONTENT_LENGTH', str(16 * 1024 * 1024)))  # 16MB

# Storage
DATA_DIR = Path(os.getenv('DATA_DIR', 'data'))
DATABASE_PATH = os.getenv('DATABASE_PATH', str(DATA_DIR / 'attendance.db'))
PHOTO_STORE_DIR = os.getenv('PHOTO_STORE_DIR', str(DATA_DIR / 'photos'))

# Upload configuration
ALLOWED_EXTENSIONS = {
    ext.strip().lower()
    for ext in os.getenv('ALLOWED_EXTENSIONS', 'jpg,jpeg,png').split(',')
    if ext.strip()
}
MIN_FILE_SIZE = int(os.getenv('MIN_FILE_SIZE', '1024'))  # 1 KB
MAX_FILE_SIZE = int(os.getenv('MAX_FILE_SIZE', str(10 * 1024 * 1024)))  # 10 MB

# Camera configuration
CAMERA_INDEX = int(os.getenv('CAMERA_INDEX', '0'))
CAMERA_WIDTH = int(os.getenv('CAMERA_WIDTH', '640'))
CAMERA_HEIGHT = int(os.getenv('CAMERA_HEIGHT', '480'))
CAMERA_WARMUP_FRAMES = int(os.getenv('CAMERA_WARMUP_FRAMES', '3'))
CAMERA_BUFFER_SIZE = int(os.getenv('CAMERA_BUFFER_SIZE', '2'))

# Face model
EMBEDDING_SIZE = int(os.getenv('EMBEDDING_SIZE', '128'))
FACE_DISTANCE_THRESHOLD = float(os.getenv('FACE_DISTANCE_THRESHOLD', '0.6'))
FACE_DETECTION_MODEL = os.getenv('FACE_DETECTION_MODEL', 'hog')  # hog | cnn
FACE_ENCODING_JITTERS = max(1, int(os.getenv('FACE_ENCODING_JITTERS', '1')))
PRELOAD_FACE_MODEL = _env_bool('PRELOAD_FACE_MODEL', '1')

# Recognition sessions
RECOGNITION_INTERVAL_SECONDS = float(os.getenv('RECOGNITION_INTERVAL_SECONDS', '1.0'))
GALLERY_FETCH_TIMEOUT = float(os.getenv('GALLERY_FETCH_TIMEOUT', '10'))
GALLERY_BUILD_WORKERS = max(1, int(os.getenv('GALLERY_BUILD_WORKERS', '4')))
PHOTO_FETCH_TIMEOUT = float(os.getenv('PHOTO_FETCH_TIMEOUT', '5'))
REQUIRE_COMPLETE_GALLERY = _env_bool('REQUIRE_COMPLETE_GALLERY')
USE_STORED_DESCRIPTORS = _env_bool('USE_STORED_DESCRIPTORS')

# Logging
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_DIR = os.getenv('LOG_DIR', 'logs')

# SSE
SSE_HEARTBEAT_SECONDS = float(os.getenv('SSE_HEARTBEAT_SECONDS', '30'))
