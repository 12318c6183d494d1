"""
Comanda service - open tabs (sales in ``open`` status) and their items.

A comanda is edited freely while open; closing it goes through
settlement_service.close_comanda.
"""
import logging
from typing import List, Dict, Any, Optional, Iterable

from sqlalchemy.orm import joinedload, selectinload

from pdv.models import Sale, SaleItem, SaleStatus, Product, Customer, PENDING_PAYMENT
from pdv.exceptions import ValidationError, NotFoundError, SaleAlreadySettledError
from pdv.services.pricing_service import calculate_subtotal
from pdv.services.stock_service import check_stock_availability
from pdv.utils.number_format import quantize_money, to_decimal, parse_quantity

logger = logging.getLogger(__name__)

_UNSET = object()


def lock_sale(session, sale_id: int) -> Sale:
    """
    Load a sale with its row locked FOR UPDATE.

    Raises:
        NotFoundError: unknown sale
    """
    sale = (
        session.query(Sale)
        .filter(Sale.id == sale_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not sale:
        raise NotFoundError(f'Venda #{sale_id} não encontrada')
    return sale


def _lock_open_sale(session, sale_id: int) -> Sale:
    sale = lock_sale(session, sale_id)
    if sale.status != SaleStatus.OPEN:
        raise SaleAlreadySettledError(sale.id)
    return sale


def ensure_customer(session, customer_id) -> Optional[int]:
    if customer_id is None:
        return None
    if session.get(Customer, customer_id) is None:
        raise NotFoundError(f'Cliente #{customer_id} não encontrado')
    return int(customer_id)


def _recalculate_totals(sale: Sale) -> None:
    """Open sales carry no discount until settlement."""
    sale.subtotal = calculate_subtotal(sale.items)
    sale.discount_amount = quantize_money(0)
    sale.total = sale.subtotal


def build_sale_items(session, items: Iterable[Dict[str, Any]]) -> List[SaleItem]:
    """
    Validate raw item payloads and build (unsaved) SaleItem rows.

    Each item is ``{product_id, quantity, unit_price?}``. ``unit_price``
    overrides the catalog price and is required for products without one.

    Raises:
        ValidationError: empty list, bad quantity or price
        NotFoundError: unknown product
    """
    items = list(items or [])
    if not items:
        raise ValidationError('Adicione pelo menos um item')

    built = []
    for raw in items:
        try:
            product_id = int(raw.get('product_id'))
        except (TypeError, ValueError):
            raise ValidationError('Produto inválido')

        product = session.get(Product, product_id)
        if product is None:
            raise NotFoundError(f'Produto #{product_id} não encontrado')
        if not product.is_active:
            raise ValidationError(f'O produto "{product.name}" está inativo')

        try:
            quantity = parse_quantity(raw.get('quantity'))
        except ValueError as e:
            raise ValidationError(f'{product.name}: {e}')

        unit_price = raw.get('unit_price')
        if unit_price in (None, ''):
            if product.price is None:
                raise ValidationError(f'Informe o preço do produto "{product.name}"')
            unit_price = product.price
        else:
            try:
                unit_price = to_decimal(unit_price, 'Preço')
            except ValueError as e:
                raise ValidationError(str(e))
        if unit_price < 0:
            raise ValidationError(f'O preço de "{product.name}" não pode ser negativo')

        unit_price = quantize_money(unit_price)
        built.append(SaleItem(
            product_id=product.id,
            product_name=product.name,
            unit_price=unit_price,
            quantity=quantity,
            subtotal=quantize_money(unit_price * quantity)
        ))

    return built


def open_comanda(session, customer_id=None, notes: Optional[str] = None, user_id: Optional[str] = None) -> Sale:
    """
    Open a new comanda identified by a customer, a free-text label, or both.

    Raises:
        ValidationError: neither customer nor notes
        NotFoundError: unknown customer
    """
    notes = (notes or '').strip() or None
    if customer_id is None and not notes:
        raise ValidationError('Informe o cliente ou uma identificação para a comanda')

    try:
        sale = Sale(
            status=SaleStatus.OPEN,
            customer_id=ensure_customer(session, customer_id),
            notes=notes,
            payment_method=PENDING_PAYMENT,
            subtotal=quantize_money(0),
            discount_amount=quantize_money(0),
            total=quantize_money(0),
            created_by=user_id
        )
        session.add(sale)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"Comanda #{sale.id} opened")
    return sale


def add_items(session, sale_id: int, items: Iterable[Dict[str, Any]], user_id: Optional[str] = None) -> Sale:
    """
    Append items to an open comanda and recompute its totals.

    Stock is checked (not reserved) against the quantities already on the
    comanda plus the new ones; the binding check happens at settlement.

    Raises:
        NotFoundError, SaleAlreadySettledError, ValidationError, InsufficientStockError
    """
    try:
        sale = _lock_open_sale(session, sale_id)
        new_items = build_sale_items(session, items)

        check_stock_availability(session, list(sale.items) + new_items)

        for item in new_items:
            sale.items.append(item)
        _recalculate_totals(sale)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"Comanda #{sale_id}: {len(new_items)} item(s) added by {user_id}")
    return sale


def update_comanda(
    session,
    sale_id: int,
    customer_id=_UNSET,
    notes=_UNSET,
    remove_item_ids: Optional[Iterable[int]] = None
) -> Sale:
    """
    Edit an open comanda. Arguments left out keep their current value;
    passing None clears customer or notes.

    Raises:
        ValidationError: no identification left, or every item removed
        NotFoundError: unknown sale, customer or item
        SaleAlreadySettledError: comanda already closed
    """
    try:
        sale = _lock_open_sale(session, sale_id)

        if customer_id is not _UNSET:
            sale.customer_id = ensure_customer(session, customer_id)
        if notes is not _UNSET:
            sale.notes = (notes or '').strip() or None
        if sale.customer_id is None and not sale.notes:
            raise ValidationError('Informe o cliente ou uma identificação para a comanda')

        remove_ids = {int(i) for i in (remove_item_ids or [])}
        if remove_ids:
            current_ids = {item.id for item in sale.items}
            unknown = remove_ids - current_ids
            if unknown:
                raise NotFoundError(f'Item(ns) {sorted(unknown)} não pertencem à comanda #{sale_id}')
            if remove_ids >= current_ids:
                raise ValidationError('A comanda não pode ficar sem itens. Exclua a comanda.')
            for item in [i for i in sale.items if i.id in remove_ids]:
                sale.items.remove(item)

        _recalculate_totals(sale)
        session.commit()
    except Exception:
        session.rollback()
        raise

    return sale


def delete_comanda(session, sale_id: int) -> dict:
    """
    Delete an open comanda and its items. Completed sales are never deleted.

    Returns:
        dict with success message and details
    """
    try:
        sale = lock_sale(session, sale_id)
        if sale.status != SaleStatus.OPEN:
            raise SaleAlreadySettledError(sale.id, f'A venda #{sale.id} já foi finalizada e não pode ser excluída')

        items_count = len(sale.items)
        session.delete(sale)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"Comanda #{sale_id} deleted ({items_count} items)")
    return {
        'success': True,
        'sale_id': sale_id,
        'items_deleted': items_count,
        'message': f'Comanda #{sale_id} excluída'
    }


def list_open_comandas(session) -> List[Sale]:
    return (
        session.query(Sale)
        .options(joinedload(Sale.customer), selectinload(Sale.items))
        .filter(Sale.status == SaleStatus.OPEN)
        .order_by(Sale.created_at, Sale.id)
        .all()
    )


def get_sale(session, sale_id: int) -> Sale:
    sale = (
        session.query(Sale)
        .options(joinedload(Sale.customer), selectinload(Sale.items))
        .filter(Sale.id == sale_id)
        .first()
    )
    if not sale:
        raise NotFoundError(f'Venda #{sale_id} não encontrada')
    return sale
