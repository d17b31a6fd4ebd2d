# gunicorn.conf.py
# Gunicorn configuration file

import logging
import os

# Logging
accesslog = '-'  # Log to stdout
errorlog = '-'   # Log to stderr
loglevel = 'info'

# Worker configuration
# One worker: the rate limiter and entry locks live in-process
workers = 1
worker_class = 'gthread'
threads = 4
timeout = 120

# Server mechanics
daemon = False
pidfile = None
umask = 0
user = None
group = None
tmp_upload_dir = None

# Hooks
def post_worker_init(worker):
    """
    Called after a worker has been forked and initialized.
    Opens the database pool when the Postgres store is configured.
    """
    logger = logging.getLogger(__name__)
    logger.info(f"=== Post-worker init hook called for worker PID {os.getpid()} ===")

    if os.environ.get('QUEUE_STORE', 'memory').lower() != 'postgres':
        return

    try:
        import db_utils
        if not db_utils.init_connection_pool():
            logger.error(f"Connection pool unavailable in gunicorn worker PID {os.getpid()}")
    except Exception as e:
        logger.error(f"Error initializing connection pool in gunicorn worker: {e}", exc_info=True)


def worker_exit(server, worker):
    """
    Called when a worker exits.
    """
    logger = logging.getLogger(__name__)
    logger.info(f"Worker {worker.pid} exiting - stopping queue service")

    try:
        import app as app_module
        app_module.cleanup(app_module.app)
    except Exception as e:
        logger.error(f"Error stopping queue service: {e}")
