# routes/health.py
from flask import Blueprint, current_app, jsonify
import logging
import time
import db_utils as db_tools

logger = logging.getLogger(__name__)
health_bp = Blueprint('health', __name__)

@health_bp.route('/health', methods=['GET'])
def health_check():
    """Health check: store reachability, limiter state and queue statistics"""
    health_status = {
        'status': 'unknown',
        'store': 'unknown',
        'pool_stats': None,
        'rate_limiter': None,
        'queue': None,
        'timestamp': time.time()
    }

    service = current_app.extensions['queue_service']

    try:
        if not service.store.ping():
            health_status['status'] = 'unhealthy'
            health_status['store'] = 'unreachable'
            return jsonify(health_status), 503

        health_status['store'] = type(service.store).__name__
        health_status['pool_stats'] = db_tools.get_pool_stats()
        health_status['rate_limiter'] = service.governor.limiter.get_stats()
        health_status['queue'] = service.get_statistics()
        health_status['status'] = 'healthy'
        return jsonify(health_status), 200

    except Exception as e:
        logger.error(f"Health check failed: {e}")
        health_status['status'] = 'unhealthy'
        health_status['store'] = f'error: {str(e)}'
        return jsonify(health_status), 503
