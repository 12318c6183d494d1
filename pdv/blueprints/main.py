"""Health checks for the load balancer and monitoring."""
from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from pdv.database import get_session
from pdv.services.cache_service import get_cache

main_bp = Blueprint('main', __name__)


@main_bp.route('/health')
def health():
    """200 when the database answers, 503 otherwise."""
    try:
        get_session().execute(text('SELECT 1')).scalar_one()
    except SQLAlchemyError as e:
        return jsonify({'status': 'unhealthy', 'database': 'disconnected', 'error': str(e)}), 503

    return jsonify({'status': 'healthy', 'database': 'connected'})


@main_bp.route('/health/cache')
def health_cache():
    """
    Redis status. Always 200: without Redis the sales summary is computed
    on every request, which is degraded but not down.
    """
    cache = get_cache()
    if not cache.is_available():
        return jsonify({'status': 'degraded', 'cache': 'unavailable'})

    if not cache.set('system', 'health_check', {'ok': True}, ttl=10):
        return jsonify({'status': 'degraded', 'cache': 'write_failed'})

    return jsonify({'status': 'ok', 'cache': 'connected'})
