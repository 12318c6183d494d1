"""
Stock service - settlement-time reconciliation, pre-flight checks and manual adjustments.

Only products with ``controls_stock`` are touched. Decrements use a
compare-and-swap UPDATE on ``current_stock`` so two settlements racing on
the same product cannot both succeed against the same starting level.
"""
import logging
from collections import OrderedDict
from typing import Iterable, List, Dict, Any, Optional

from sqlalchemy import update, func
from sqlalchemy.orm.attributes import set_committed_value

from pdv.models import Product, StockMovement, MovementType
from pdv.exceptions import BusinessLogicError, NotFoundError, InsufficientStockError, ValidationError

logger = logging.getLogger(__name__)


def _field(item: Any, name: str):
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def _lock_products(session, product_ids: Iterable[int]) -> Dict[int, Product]:
    """Lock product rows FOR UPDATE (ordered by id) and return them by id."""
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    products = (
        session.query(Product)
        .filter(Product.id.in_(ids))
        .order_by(Product.id)
        .with_for_update()
        .populate_existing()
        .all()
    )
    return {p.id: p for p in products}


def _compare_and_swap(session, product: Product, expected: Optional[int], new_stock: int) -> bool:
    """UPDATE products SET current_stock = new WHERE id = :id AND current_stock = expected."""
    condition = Product.current_stock.is_(None) if expected is None else Product.current_stock == expected
    result = session.execute(
        update(Product)
        .where(Product.id == product.id, condition)
        .values(current_stock=new_stock)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    set_committed_value(product, 'current_stock', new_stock)
    return True


def reconcile_stock(
    session,
    sale,
    items: Iterable[Any],
    user_id: Optional[str] = None,
    allow_negative: bool = False
) -> List[StockMovement]:
    """
    Decrement stock for every stock-controlled item of a sale being settled.

    Runs inside the caller's transaction and never commits: a raised error
    leaves the rollback to the caller, so no partial decrement survives.

    Args:
        session: SQLAlchemy session
        sale: Sale being settled (its id goes into each movement's reference_id)
        items: SaleItem rows
        user_id: Operator id recorded on the movements
        allow_negative: Skip the sufficiency check (backorder)

    Returns:
        List of StockMovement rows added to the session

    Raises:
        NotFoundError: an item references an unknown product
        InsufficientStockError: not enough stock, or the row changed concurrently
    """
    items = list(items)
    products = _lock_products(session, [_field(i, 'product_id') for i in items])
    movements = []

    for item in items:
        product = products.get(_field(item, 'product_id'))
        if product is None:
            raise NotFoundError(f"Produto #{_field(item, 'product_id')} não encontrado")
        if not product.controls_stock:
            continue

        quantity = int(_field(item, 'quantity'))
        expected = product.current_stock
        previous_stock = product.on_hand_qty
        new_stock = previous_stock - quantity

        if new_stock < 0:
            if not allow_negative:
                raise InsufficientStockError(product.name, quantity, previous_stock)
            logger.warning(
                f"[STOCK] Backorder on product {product.id} ({product.name}): "
                f"{previous_stock} -> {new_stock} (sale #{sale.id})"
            )

        if not _compare_and_swap(session, product, expected, new_stock):
            logger.warning(f"[STOCK] Concurrent stock change on product {product.id}, aborting settlement")
            raise InsufficientStockError(product.name, quantity, previous_stock)

        movement = StockMovement(
            product_id=product.id,
            movement_type=MovementType.SALE,
            quantity=quantity,
            previous_stock=previous_stock,
            new_stock=new_stock,
            reason=f'Venda #{sale.id}',
            reference_id=sale.id,
            created_by=user_id
        )
        session.add(movement)
        movements.append(movement)

    return movements


def check_stock_availability(session, items: Iterable[Any]) -> None:
    """
    Read-only pre-flight check (no locks). Quantities of repeated products are summed.

    Raises:
        NotFoundError: unknown product
        InsufficientStockError: first product without enough stock
    """
    required = OrderedDict()
    for item in items:
        product_id = int(_field(item, 'product_id'))
        required[product_id] = required.get(product_id, 0) + int(_field(item, 'quantity'))

    if not required:
        return

    products = {
        p.id: p for p in session.query(Product).filter(Product.id.in_(list(required.keys()))).all()
    }

    for product_id, quantity in required.items():
        product = products.get(product_id)
        if product is None:
            raise NotFoundError(f'Produto #{product_id} não encontrado')
        if product.controls_stock and product.on_hand_qty < quantity:
            raise InsufficientStockError(product.name, quantity, product.on_hand_qty)


def adjust_stock(
    session,
    product_id: int,
    quantity: Optional[int] = None,
    new_stock: Optional[int] = None,
    reason: Optional[str] = None,
    user_id: Optional[str] = None
) -> StockMovement:
    """
    Register a stock entry (``quantity`` > 0) or an inventory count (``new_stock`` >= 0).

    Exactly one of ``quantity`` / ``new_stock`` must be given.

    Raises:
        ValidationError: both or neither given, or out of range
        NotFoundError: unknown product
        BusinessLogicError: product does not control stock
    """
    if (quantity is None) == (new_stock is None):
        raise ValidationError('Informe a quantidade de entrada ou o novo estoque')

    try:
        product = (
            session.query(Product)
            .filter(Product.id == product_id)
            .with_for_update()
            .first()
        )
        if not product:
            raise NotFoundError(f'Produto #{product_id} não encontrado')
        if not product.controls_stock:
            raise BusinessLogicError(f'O produto "{product.name}" não controla estoque')

        previous_stock = product.on_hand_qty
        if quantity is not None:
            if quantity <= 0:
                raise ValidationError('A quantidade de entrada deve ser maior que zero')
            target = previous_stock + quantity
            movement_type = MovementType.ENTRY
            moved = quantity
        else:
            if new_stock < 0:
                raise ValidationError('O estoque não pode ser negativo')
            target = new_stock
            movement_type = MovementType.ADJUSTMENT
            moved = abs(new_stock - previous_stock)

        product.current_stock = target
        movement = StockMovement(
            product_id=product.id,
            movement_type=movement_type,
            quantity=moved,
            previous_stock=previous_stock,
            new_stock=target,
            reason=reason,
            created_by=user_id
        )
        session.add(movement)
        session.commit()

        logger.info(
            f"[STOCK] {movement_type.value} on product {product.id}: {previous_stock} -> {target}"
        )
        return movement

    except Exception:
        session.rollback()
        raise


def get_low_stock_products(session) -> List[Product]:
    """Active stock-controlled products at or below their low stock threshold."""
    return (
        session.query(Product)
        .filter(
            Product.controls_stock.is_(True),
            Product.is_active.is_(True),
            Product.low_stock_threshold.isnot(None),
            func.coalesce(Product.current_stock, 0) <= Product.low_stock_threshold
        )
        .order_by(Product.name)
        .all()
    )
