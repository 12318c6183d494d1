"""Products blueprint - stock entries/counts and low stock alerts."""
from flask import Blueprint, request, jsonify, current_app, g

from pdv.database import get_session
from pdv.middleware import require_login
from pdv.forms.checkout_forms import StockAdjustmentForm, load_form
from pdv.services.stock_service import adjust_stock, get_low_stock_products

products_bp = Blueprint('products', __name__, url_prefix='/products')


@products_bp.route('/<int:product_id>/stock', methods=['POST'])
@require_login
def stock_adjustment(product_id: int):
    """Register a stock entry (``quantity``) or an inventory count (``new_stock``)."""
    db_session = get_session()
    form = load_form(StockAdjustmentForm, request.get_json(silent=True))

    movement = adjust_stock(
        db_session,
        product_id,
        quantity=form.quantity.data,
        new_stock=form.new_stock.data,
        reason=form.reason.data,
        user_id=g.user_id
    )
    current_app.logger.info(
        f"[STOCK] Product {product_id}: {movement.previous_stock} -> {movement.new_stock} by user {g.user_id}"
    )
    return jsonify({
        'movement': movement.to_dict(),
        'product': movement.product.to_dict()
    }), 201


@products_bp.route('/low-stock', methods=['GET'])
@require_login
def low_stock():
    db_session = get_session()
    products = get_low_stock_products(db_session)
    return jsonify({'products': [p.to_dict() for p in products]})
