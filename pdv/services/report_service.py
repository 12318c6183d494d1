"""Sales summary over completed sales, with a Redis cache-aside wrapper."""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any

from flask import current_app
from sqlalchemy import func

from pdv.models import Sale, SaleStatus
from pdv.utils.number_format import quantize_money

logger = logging.getLogger(__name__)


def get_sales_summary(session, start_dt: datetime, end_dt: datetime) -> Dict[str, Any]:
    """
    Totals of sales completed in ``[start_dt, end_dt)``.

    Returns:
        dict with sale_count, subtotal, discount_amount, total and
        by_payment_method ({method: {'count', 'total'}})
    """
    rows = (
        session.query(
            Sale.payment_method,
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.subtotal), 0),
            func.coalesce(func.sum(Sale.discount_amount), 0),
            func.coalesce(func.sum(Sale.total), 0)
        )
        .filter(
            Sale.status == SaleStatus.COMPLETED,
            Sale.completed_at >= start_dt,
            Sale.completed_at < end_dt
        )
        .group_by(Sale.payment_method)
        .all()
    )

    summary = {
        'sale_count': 0,
        'subtotal': Decimal('0.00'),
        'discount_amount': Decimal('0.00'),
        'total': Decimal('0.00'),
        'by_payment_method': {},
    }
    for method, count, subtotal, discount, total in rows:
        summary['sale_count'] += count
        summary['subtotal'] += quantize_money(subtotal)
        summary['discount_amount'] += quantize_money(discount)
        summary['total'] += quantize_money(total)
        summary['by_payment_method'][method] = {
            'count': count,
            'total': quantize_money(total),
        }

    return summary


def get_cached_sales_summary(session, start_dt: datetime, end_dt: datetime) -> Dict[str, Any]:
    """get_sales_summary through the cache (module ``sales``); falls back to a direct query."""
    cache_key = f"summary:{start_dt.isoformat()}:{end_dt.isoformat()}"
    try:
        from pdv.services.cache_service import get_cache
        cache = get_cache()
    except RuntimeError as e:
        logger.debug(f"[CACHE] Summary without cache: {e}")
        return get_sales_summary(session, start_dt, end_dt)

    return cache.memoize(
        'sales',
        cache_key,
        lambda: get_sales_summary(session, start_dt, end_dt),
        ttl=current_app.config.get('CACHE_SUMMARY_TTL', 120)
    )
