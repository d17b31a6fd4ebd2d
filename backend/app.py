"""
Dig Queue API Backend
A Flask API over the digging queue engine
"""

from flask import Flask, request
from flask_cors import CORS
import atexit
import logging
import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Configuration
from config import QueueSettings, configure_logging, init_app_config

# Pooled connections for the web process when the Postgres store is used
os.environ.setdefault('DB_USE_POOLING', 'true')

import db_utils as db_tools
from queue_service import build_queue_service

logger = configure_logging()


def create_app(service=None):
    """
    Build the Flask app

    Args:
        service: QueueService to serve (built from the environment when None)

    Returns:
        Flask application
    """
    app = Flask(__name__)
    CORS(app)
    init_app_config(app)

    if service is None:
        settings = QueueSettings.from_env()
        logger.info(f"Discogs token present: {bool(settings.discogs_token)}")
        logger.info(f"Queue store: {settings.store}")
        service = build_queue_service(settings)
    app.extensions['queue_service'] = service

    # Register all route blueprints
    from routes import register_blueprints
    register_blueprints(app)

    # Request/response logging
    @app.before_request
    def log_request():
        """Log incoming requests"""
        logger.info(f"{request.method} {request.path}")

    @app.after_request
    def log_response(response):
        """Log response status"""
        logger.info(f"{request.method} {request.path} - {response.status_code}")
        return response

    logger.info(f"Flask app initialized in PID {os.getpid()}")
    return app


def cleanup(app):
    """Stop the resolver pool and close the connection pool on shutdown"""
    logger.info("Shutting down queue service...")
    service = app.extensions.get('queue_service')
    if service is not None:
        service.shutdown()
    db_tools.close_connection_pool()
    logger.info("Shutdown complete")


app = create_app()
atexit.register(cleanup, app)


if __name__ == '__main__':
    # Running directly with 'python app.py' (not gunicorn)
    logger.info("Starting Flask application directly (not gunicorn)...")
    app.run(debug=True, host='0.0.0.0', port=int(os.environ.get('PORT', '5001')))
