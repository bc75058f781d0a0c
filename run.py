"""
Application entry point
Starts the Flask application
"""
import atexit
import os

from dotenv import load_dotenv

load_dotenv()

from app import create_app
from app.globals import get_services

app = create_app()
atexit.register(get_services(app).sessions.shutdown)

if __name__ == '__main__':
    host = os.getenv('FLASK_HOST', '0.0.0.0')
    port = int(os.getenv('FLASK_PORT', 5000))
    debug = os.getenv('FLASK_DEBUG', 'False').lower() in ('true', '1', 'yes')

    app.logger.info(f"Starting Flask application on {host}:{port}")
    app.logger.info(f"Debug mode: {debug}")

    # The reloader would open the camera twice
    app.run(
        host=host,
        port=port,
        debug=debug,
        use_reloader=False,
        threaded=True
    )
