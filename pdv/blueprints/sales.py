"""Sales blueprint - direct sale checkout, sale detail, loyalty reward and summary."""
from datetime import datetime, timedelta

from flask import Blueprint, request, jsonify, current_app, g

from pdv.database import get_session
from pdv.middleware import require_login
from pdv.exceptions import PdvError, PartialFailureError, ValidationError
from pdv.forms.checkout_forms import PricingPreviewForm, DirectSaleForm, load_form, items_from_payload
from pdv.services.comanda_service import build_sale_items, get_sale
from pdv.services.coupon_service import get_selectable_coupon
from pdv.services.pricing_service import DiscountPolicy, preview_pricing
from pdv.services.stock_service import check_stock_availability
from pdv.services.loyalty_service import LoyaltyPolicy, evaluate_loyalty, issue_loyalty_coupon
from pdv.services.settlement_service import checkout_direct_sale
from pdv.services.coupon_message_service import (
    build_coupon_message, build_whatsapp_url, build_reward_notification
)
from pdv.services.report_service import get_cached_sales_summary
from pdv.blueprints.metrics import record_settlement

sales_bp = Blueprint('sales', __name__, url_prefix='/sales')


def _parse_date(value, field: str):
    try:
        return datetime.strptime(value, '%Y-%m-%d')
    except (TypeError, ValueError):
        raise ValidationError(f'Data inválida em "{field}". Use AAAA-MM-DD')


def _optional_int(payload: dict, key: str):
    value = payload.get(key)
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'Valor inválido para {key}')


@sales_bp.route('/preview', methods=['POST'])
@require_login
def preview():
    """Price a cart before checkout. Stock is checked, nothing is written."""
    db_session = get_session()
    payload = request.get_json(silent=True) or {}
    form = load_form(PricingPreviewForm, payload)
    customer_id = _optional_int(payload, 'customer_id')

    items = build_sale_items(db_session, items_from_payload(payload))
    check_stock_availability(db_session, items)

    coupon = None
    if form.coupon_id.data is not None:
        coupon = get_selectable_coupon(db_session, form.coupon_id.data, customer_id)

    pricing = preview_pricing(
        items,
        coupon=coupon,
        manual_discount=form.manual_discount,
        policy=DiscountPolicy.from_config()
    )
    offer = evaluate_loyalty(pricing.total, customer_id, LoyaltyPolicy.from_config())

    return jsonify({
        'items': [item.to_dict() for item in items],
        'pricing': pricing.to_dict(),
        'loyalty_offer': offer.to_dict() if offer else None
    })


@sales_bp.route('/checkout', methods=['POST'])
@require_login
def checkout():
    """Create and settle a direct sale."""
    db_session = get_session()
    payload = request.get_json(silent=True) or {}
    form = load_form(DirectSaleForm, payload)
    items = items_from_payload(payload)

    idempotency_key = form.idempotency_key.data or request.headers.get('Idempotency-Key')

    try:
        result = checkout_direct_sale(
            db_session,
            items,
            payment_method=form.payment_method.data,
            customer_id=form.customer_id.data,
            coupon_id=form.coupon_id.data,
            manual_discount=form.manual_discount,
            idempotency_key=idempotency_key,
            user_id=g.user_id
        )
    except PartialFailureError:
        record_settlement('direct', 'failed')
        raise
    except PdvError as e:
        record_settlement('direct', 'rejected')
        current_app.logger.warning(f"[SETTLEMENT] Direct sale rejected: {e.message}")
        raise

    record_settlement('direct', 'completed', result)
    current_app.logger.info(f"[SALES] Direct sale #{result.sale.id} by user {g.user_id}")

    response = result.to_dict()
    response.update(build_reward_notification(result.sale.customer, result.loyalty_coupon))
    return jsonify(response), 201


@sales_bp.route('/<int:sale_id>', methods=['GET'])
@require_login
def sale_detail(sale_id: int):
    db_session = get_session()
    sale = get_sale(db_session, sale_id)
    return jsonify({'sale': sale.to_dict()})


@sales_bp.route('/<int:sale_id>/loyalty-coupon', methods=['POST'])
@require_login
def loyalty_coupon(sale_id: int):
    """
    Issue the loyalty coupon of a completed sale (when not issued automatically).

    Idempotent: a second call returns the same coupon.
    """
    db_session = get_session()
    coupon = issue_loyalty_coupon(db_session, sale_id, LoyaltyPolicy.from_config(), user_id=g.user_id)

    customer = coupon.customer
    message = build_coupon_message(customer.name, coupon)
    return jsonify({
        'coupon': coupon.to_dict(),
        'message': message,
        'whatsapp_url': build_whatsapp_url(customer.phone, message)
    }), 201


@sales_bp.route('/summary', methods=['GET'])
@require_login
def summary():
    """Completed sales between ``start`` and ``end`` (inclusive dates, default today)."""
    db_session = get_session()
    today = datetime.now().strftime('%Y-%m-%d')
    start_dt = _parse_date(request.args.get('start', today), 'start')
    end_dt = _parse_date(request.args.get('end', today), 'end') + timedelta(days=1)

    if end_dt <= start_dt:
        raise ValidationError('A data final deve ser posterior à inicial')

    data = get_cached_sales_summary(db_session, start_dt, end_dt)
    return jsonify({
        'start': start_dt.date().isoformat(),
        'end': (end_dt - timedelta(days=1)).date().isoformat(),
        'sale_count': data['sale_count'],
        'subtotal': str(data['subtotal']),
        'discount_amount': str(data['discount_amount']),
        'total': str(data['total']),
        'by_payment_method': {
            method: {'count': row['count'], 'total': str(row['total'])}
            for method, row in data['by_payment_method'].items()
        }
    })
