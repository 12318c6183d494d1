import pytest
import uuid
from datetime import datetime, timedelta
from decimal import Decimal

from pdv import create_app
from pdv.database import get_session, create_all, drop_all
from pdv.models import Customer, Product, Coupon, DiscountType
from pdv.services import comanda_service


def _persist(session, obj):
    """Commit and reload so attributes stay readable after the request teardown closes the session."""
    session.add(obj)
    session.commit()
    session.refresh(obj)
    return obj


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing (in-memory SQLite, no Redis)."""
    app = create_app('config.TestConfig')
    return app


@pytest.fixture(scope='function')
def session(app):
    """Fresh schema per test."""
    ctx = app.app_context()
    ctx.push()
    create_all()
    session = get_session()
    yield session
    session.rollback()
    session.remove()
    drop_all()
    ctx.pop()


@pytest.fixture(scope='function')
def client(app, session):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def authenticated_client(client):
    """Test client with an operator in session."""
    with client.session_transaction() as sess:
        sess['user_id'] = 1
    return client


@pytest.fixture(scope='function')
def customer(session):
    return _persist(session, Customer(name='Maria Silva', phone='(11) 98765-4321'))


@pytest.fixture(scope='function')
def other_customer(session):
    return _persist(session, Customer(name='João Souza', phone='11912345678'))


@pytest.fixture(scope='function')
def product(session):
    """Stock-controlled product priced at 10.00 with 5 units."""
    return _persist(session, Product(
        name='Churros de Doce de Leite',
        price=Decimal('10.00'),
        is_active=True,
        controls_stock=True,
        current_stock=5,
        low_stock_threshold=2
    ))


@pytest.fixture(scope='function')
def second_product(session):
    """Stock-controlled product priced at 8.00 with 4 units."""
    return _persist(session, Product(
        name='Churros de Chocolate',
        price=Decimal('8.00'),
        is_active=True,
        controls_stock=True,
        current_stock=4,
        low_stock_threshold=1
    ))


@pytest.fixture(scope='function')
def unlimited_product(session):
    """Product without stock control."""
    return _persist(session, Product(
        name='Café Expresso',
        price=Decimal('5.00'),
        is_active=True,
        controls_stock=False
    ))


@pytest.fixture(scope='function')
def weighed_product(session):
    """Product sold by weight: no catalog price."""
    return _persist(session, Product(
        name='Açaí (kg)',
        price=None,
        is_active=True,
        controls_stock=False
    ))


@pytest.fixture(scope='function')
def open_comanda(session, customer, product):
    """Open comanda of ``customer`` with 2 x product (subtotal 20.00)."""
    sale = comanda_service.open_comanda(session, customer_id=customer.id, notes='Mesa 4', user_id='1')
    sale = comanda_service.add_items(session, sale.id, [{'product_id': product.id, 'quantity': 2}], user_id='1')
    session.refresh(sale)
    return sale


@pytest.fixture(scope='function')
def make_coupon(session):
    """Factory for coupons bypassing the service validations."""
    def _make(customer, discount_type=DiscountType.FIXED, discount_value='5.00',
              expire_at=None, is_active=True, is_used=False, code=None):
        coupon = Coupon(
            code=code or f"CUPOM{uuid.uuid4().hex[:8].upper()}",
            customer_id=customer.id,
            discount_type=discount_type,
            discount_value=Decimal(discount_value),
            expire_at=expire_at or datetime.now() + timedelta(days=7),
            is_active=is_active,
            is_used=is_used
        )
        return _persist(session, coupon)
    return _make
