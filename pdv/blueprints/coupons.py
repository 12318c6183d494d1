"""Coupons blueprint - customer coupons, manual creation and reminders."""
from datetime import datetime, time

from flask import Blueprint, request, jsonify, current_app, g

from pdv.database import get_session
from pdv.middleware import require_login
from pdv.exceptions import NotFoundError, ValidationError
from pdv.forms.checkout_forms import CouponForm, load_form
from pdv.models import Coupon, Customer
from pdv.services import coupon_service
from pdv.services.coupon_message_service import build_coupon_message, build_whatsapp_url

coupons_bp = Blueprint('coupons', __name__, url_prefix='/coupons')

# Coupons are valid until the end of the chosen day
END_OF_DAY = time(23, 59, 59)


@coupons_bp.route('/customer/<int:customer_id>', methods=['GET'])
@require_login
def customer_coupons(customer_id: int):
    """Coupons a customer can use right now."""
    db_session = get_session()
    if db_session.get(Customer, customer_id) is None:
        raise NotFoundError(f'Cliente #{customer_id} não encontrado')

    coupons = coupon_service.get_available_coupons(db_session, customer_id)
    return jsonify({'coupons': [c.to_dict() for c in coupons]})


@coupons_bp.route('/', methods=['POST'])
@require_login
def create_coupon():
    db_session = get_session()
    form = load_form(CouponForm, request.get_json(silent=True))

    coupon = coupon_service.create_coupon(
        db_session,
        customer_id=form.customer_id.data,
        discount_type=form.discount_type.data,
        discount_value=form.discount_value.data,
        expire_at=datetime.combine(form.expire_at.data, END_OF_DAY),
        code=form.code.data,
        user_id=g.user_id
    )
    current_app.logger.info(f"[COUPON] {coupon.code} created by user {g.user_id}")
    return jsonify({'coupon': coupon.to_dict()}), 201


@coupons_bp.route('/<int:coupon_id>/deactivate', methods=['POST'])
@require_login
def deactivate(coupon_id: int):
    db_session = get_session()
    coupon = coupon_service.deactivate_coupon(db_session, coupon_id)
    return jsonify({'coupon': coupon.to_dict()})


@coupons_bp.route('/expiring', methods=['GET'])
@require_login
def expiring():
    """Unused coupons expiring soon, with a ready-to-send WhatsApp reminder link."""
    db_session = get_session()
    try:
        days = int(request.args.get('days', 3))
    except ValueError:
        raise ValidationError('Parâmetro "days" inválido')

    coupons = coupon_service.get_expiring_coupons(db_session, within_days=days)
    return jsonify({
        'coupons': [
            dict(c.to_dict(), customer=c.customer.to_dict() if c.customer else None)
            for c in coupons
        ]
    })


@coupons_bp.route('/<int:coupon_id>/message', methods=['GET'])
@require_login
def coupon_message(coupon_id: int):
    """Message announcing the coupon to its customer (generator or canned template)."""
    db_session = get_session()
    coupon = db_session.get(Coupon, coupon_id)
    if coupon is None:
        raise NotFoundError(f'Cupom #{coupon_id} não encontrado')

    customer = coupon.customer
    message = build_coupon_message(customer.name, coupon)
    return jsonify({
        'coupon': coupon.to_dict(),
        'message': message,
        'whatsapp_url': build_whatsapp_url(customer.phone, message)
    })
