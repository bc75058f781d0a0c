"""
Logging configuration for the attendance engine
"""

import logging
import logging.handlers
from datetime import datetime
from pathlib import Path

_installed_handlers = []


def setup_logging(app, log_level='INFO', log_dir='logs', max_log_size=10*1024*1024, backup_count=5):
    """
    Set up logging for the Flask application

    Args:
        app: Flask app instance
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory receiving the rotating log files
        max_log_size: Maximum size of one log file (bytes)
        backup_count: Number of rotated files to keep
    """

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, str(log_level).upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Rotating main log
    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / 'attendance_system.log',
        maxBytes=max_log_size,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    # Errors only
    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / 'errors.log',
        maxBytes=max_log_size,
        backupCount=backup_count,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Replace handlers from a previous setup (tests create several apps)
    for handler in _installed_handlers:
        root_logger.removeHandler(handler)
        handler.close()
    _installed_handlers[:] = [file_handler, console_handler, error_handler]

    for handler in _installed_handlers:
        root_logger.addHandler(handler)

    for name in ('recognition', 'database', 'api'):
        logging.getLogger(name).setLevel(level)

    app.logger.setLevel(level)

    app.logger.info("=" * 50)
    app.logger.info("ATTENDANCE ENGINE STARTUP")
    app.logger.info(f"Timestamp: {datetime.now().isoformat()}")
    app.logger.info(f"Log Level: {logging.getLevelName(level)}")
    app.logger.info(f"Log Directory: {log_dir.absolute()}")
    app.logger.info("=" * 50)


class RecognitionLogger:
    """Logger for recognition sessions and attendance marks"""

    def __init__(self):
        self.logger = logging.getLogger('recognition')

    def log_session(self, course, action, details=None):
        details_info = f", Details: {details}" if details else ""
        self.logger.info(f"Session {action.upper()} - Course: {course}{details_info}")

    def log_gallery_built(self, course, size, excluded):
        """Log a finished gallery build"""
        if excluded:
            self.logger.warning(
                f"Gallery partial - Course: {course}, Identities: {size}, Excluded: {', '.join(excluded)}"
            )
        else:
            self.logger.info(f"Gallery ready - Course: {course}, Identities: {size}")

    def log_attendance_marked(self, name, student_id, course, distance=None):
        distance_info = f", Distance: {distance:.3f}" if distance is not None else ""
        self.logger.info(
            f"Attendance marked - Name: {name}, Student ID: {student_id}, Course: {course}{distance_info}"
        )

    def log_absentees(self, course, student_ids):
        self.logger.info(f"Absentees recorded - Course: {course}, Count: {len(student_ids)}")


class DatabaseLogger:
    """Logger for database operations"""

    def __init__(self):
        self.logger = logging.getLogger('database')

    def log_query(self, query_type, table, duration=None):
        duration_info = f", Duration: {duration:.3f}s" if duration else ""
        self.logger.debug(f"DB Query - Type: {query_type}, Table: {table}{duration_info}")

    def log_error(self, operation, error_message):
        self.logger.error(f"DB Error - Operation: {operation}, Error: {error_message}")


class APILogger:
    """Logger for API calls"""

    def __init__(self):
        self.logger = logging.getLogger('api')

    def log_request(self, method, endpoint, ip_address=None):
        ip_info = f", IP: {ip_address}" if ip_address else ""
        self.logger.info(f"API Request - {method} {endpoint}{ip_info}")

    def log_response(self, endpoint, status_code, duration=None):
        duration_info = f", Duration: {duration:.3f}s" if duration else ""
        self.logger.info(f"API Response - {endpoint}, Status: {status_code}{duration_info}")

    def log_error(self, endpoint, error_message, status_code=500):
        self.logger.error(f"API Error - {endpoint}, Status: {status_code}, Error: {error_message}")


# Global logger instances
recognition_logger = RecognitionLogger()
database_logger = DatabaseLogger()
api_logger = APILogger()


def get_client_ip(request):
    """Client IP, honouring reverse-proxy headers"""
    if request.headers.get('X-Forwarded-For'):
        return request.headers.get('X-Forwarded-For').split(',')[0].strip()
    elif request.headers.get('X-Real-IP'):
        return request.headers.get('X-Real-IP')
    else:
        return request.remote_addr


def log_request_info(request):
    ip_address = get_client_ip(request)
    api_logger.log_request(request.method, request.endpoint, ip_address=ip_address)
    return ip_address
