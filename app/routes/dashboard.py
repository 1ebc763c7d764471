"""
Dashboard routes — health checks and queue stats.
"""
import logging

from flask import Blueprint, jsonify

from app import extensions
from app.services.circuit_breaker import health_snapshot

logger = logging.getLogger('routes.dashboard')

bp = Blueprint('dashboard', __name__)


@bp.route('/health')
def health_check():
    """Health check endpoint."""
    return jsonify({"status": "healthy"}), 200


@bp.route('/api/health')
def api_health():
    """Redis reachability, queue depth and circuit breaker states."""
    try:
        extensions.redis_client.ping()
        queue_size = extensions.redis_client.llen('rq:queue:default') or 0
        redis_ok = True
    except Exception as e:
        logger.warning("Redis health check failed: %s", e)
        queue_size = None
        redis_ok = False

    return jsonify({
        'status': 'healthy' if redis_ok else 'degraded',
        'redis': redis_ok,
        'queue_size': queue_size,
        'services': health_snapshot() if redis_ok else {},
    })
