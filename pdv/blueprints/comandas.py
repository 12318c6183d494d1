"""Comandas blueprint - open tabs, their items and closing."""
from flask import Blueprint, request, jsonify, current_app, g

from pdv.database import get_session
from pdv.middleware import require_login
from pdv.exceptions import PdvError, PartialFailureError, ValidationError, SaleAlreadySettledError
from pdv.forms.checkout_forms import (
    OpenComandaForm, PricingPreviewForm, SettlementForm, load_form, items_from_payload
)
from pdv.services import comanda_service
from pdv.services.coupon_service import get_available_coupons, get_selectable_coupon
from pdv.services.pricing_service import DiscountPolicy, preview_pricing
from pdv.services.loyalty_service import LoyaltyPolicy, evaluate_loyalty
from pdv.services.settlement_service import close_comanda
from pdv.services.coupon_message_service import build_reward_notification
from pdv.blueprints.metrics import record_settlement

comandas_bp = Blueprint('comandas', __name__, url_prefix='/comandas')


@comandas_bp.route('/', methods=['GET'])
@require_login
def list_comandas():
    """Open comandas, oldest first."""
    db_session = get_session()
    comandas = comanda_service.list_open_comandas(db_session)
    return jsonify({'comandas': [c.to_dict() for c in comandas]})


@comandas_bp.route('/', methods=['POST'])
@require_login
def open_comanda():
    db_session = get_session()
    form = load_form(OpenComandaForm, request.get_json(silent=True))

    sale = comanda_service.open_comanda(
        db_session,
        customer_id=form.customer_id.data,
        notes=form.notes.data,
        user_id=g.user_id
    )
    current_app.logger.info(f"[COMANDA] Opened #{sale.id} by user {g.user_id}")
    return jsonify({'comanda': sale.to_dict()}), 201


@comandas_bp.route('/<int:sale_id>', methods=['GET'])
@require_login
def comanda_detail(sale_id: int):
    """Comanda with items and the coupons its customer can use."""
    db_session = get_session()
    sale = comanda_service.get_sale(db_session, sale_id)

    coupons = []
    if sale.customer_id is not None and sale.is_open:
        coupons = get_available_coupons(db_session, sale.customer_id)

    return jsonify({
        'comanda': sale.to_dict(),
        'available_coupons': [c.to_dict() for c in coupons]
    })


@comandas_bp.route('/<int:sale_id>/items', methods=['POST'])
@require_login
def add_items(sale_id: int):
    db_session = get_session()
    items = items_from_payload(request.get_json(silent=True))

    sale = comanda_service.add_items(db_session, sale_id, items, user_id=g.user_id)
    return jsonify({'comanda': sale.to_dict()})


@comandas_bp.route('/<int:sale_id>', methods=['PATCH'])
@require_login
def update_comanda(sale_id: int):
    """Change customer / notes or remove items. Only keys present in the payload change."""
    db_session = get_session()
    payload = request.get_json(silent=True) or {}

    changes = {}
    if 'customer_id' in payload:
        customer_id = payload['customer_id']
        if customer_id is not None:
            try:
                customer_id = int(customer_id)
            except (TypeError, ValueError):
                raise ValidationError('Cliente inválido')
        changes['customer_id'] = customer_id
    if 'notes' in payload:
        changes['notes'] = payload['notes']
    if 'remove_item_ids' in payload:
        try:
            changes['remove_item_ids'] = [int(i) for i in payload['remove_item_ids'] or []]
        except (TypeError, ValueError):
            raise ValidationError('Itens inválidos')

    sale = comanda_service.update_comanda(db_session, sale_id, **changes)
    return jsonify({'comanda': sale.to_dict()})


@comandas_bp.route('/<int:sale_id>', methods=['DELETE'])
@require_login
def delete_comanda(sale_id: int):
    db_session = get_session()
    result = comanda_service.delete_comanda(db_session, sale_id)
    current_app.logger.info(f"[COMANDA] Deleted #{sale_id} by user {g.user_id}")
    return jsonify(result)


@comandas_bp.route('/<int:sale_id>/preview', methods=['POST'])
@require_login
def preview(sale_id: int):
    """Live totals for the close dialog. Nothing is written."""
    db_session = get_session()
    form = load_form(PricingPreviewForm, request.get_json(silent=True))
    sale = comanda_service.get_sale(db_session, sale_id)
    if not sale.is_open:
        raise SaleAlreadySettledError(sale.id)

    coupon = None
    if form.coupon_id.data is not None:
        coupon = get_selectable_coupon(db_session, form.coupon_id.data, sale.customer_id)

    pricing = preview_pricing(
        sale.items,
        coupon=coupon,
        manual_discount=form.manual_discount,
        policy=DiscountPolicy.from_config()
    )
    offer = evaluate_loyalty(pricing.total, sale.customer_id, LoyaltyPolicy.from_config())

    return jsonify({
        'pricing': pricing.to_dict(),
        'loyalty_offer': offer.to_dict() if offer else None
    })


@comandas_bp.route('/<int:sale_id>/close', methods=['POST'])
@require_login
def close(sale_id: int):
    db_session = get_session()
    form = load_form(SettlementForm, request.get_json(silent=True))

    try:
        result = close_comanda(
            db_session,
            sale_id,
            payment_method=form.payment_method.data,
            coupon_id=form.coupon_id.data,
            manual_discount=form.manual_discount,
            user_id=g.user_id
        )
    except PartialFailureError:
        record_settlement('comanda', 'failed')
        raise
    except PdvError as e:
        record_settlement('comanda', 'rejected')
        current_app.logger.warning(f"[SETTLEMENT] Comanda #{sale_id} rejected: {e.message}")
        raise

    record_settlement('comanda', 'completed', result)

    response = result.to_dict()
    response.update(build_reward_notification(result.sale.customer, result.loyalty_coupon))
    return jsonify(response)
