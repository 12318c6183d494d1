"""
Integration tests for comanda lifecycle (open, items, edit, delete).
"""

import pytest
from decimal import Decimal

from pdv.exceptions import ValidationError, NotFoundError, SaleAlreadySettledError, InsufficientStockError
from pdv.models import Sale, SaleItem, SaleStatus
from pdv.services import comanda_service
from pdv.services.settlement_service import close_comanda


class TestOpenComanda:

    def test_open_with_customer(self, session, customer):
        sale = comanda_service.open_comanda(session, customer_id=customer.id, user_id='1')

        assert sale.status == SaleStatus.OPEN
        assert sale.customer_id == customer.id
        assert sale.payment_method == 'pending'
        assert sale.total == Decimal('0.00')

    def test_open_with_label_only(self, session):
        sale = comanda_service.open_comanda(session, notes='  Balcão 2 ')
        assert sale.notes == 'Balcão 2'
        assert sale.customer_id is None

    def test_requires_identification(self, session):
        with pytest.raises(ValidationError):
            comanda_service.open_comanda(session, notes='   ')

    def test_unknown_customer(self, session):
        with pytest.raises(NotFoundError):
            comanda_service.open_comanda(session, customer_id=999)
        assert session.query(Sale).count() == 0


class TestAddItems:

    def test_totals_follow_items(self, session, open_comanda, unlimited_product):
        sale = comanda_service.add_items(
            session, open_comanda.id, [{'product_id': unlimited_product.id, 'quantity': '3'}]
        )

        assert len(sale.items) == 2
        assert sale.subtotal == Decimal('35.00')
        assert sale.total == Decimal('35.00')
        assert sale.discount_amount == Decimal('0.00')

    def test_custom_price_for_weighed_product(self, session, open_comanda, weighed_product):
        sale = comanda_service.add_items(
            session, open_comanda.id,
            [{'product_id': weighed_product.id, 'quantity': 1, 'unit_price': '18,90'}]
        )

        item = [i for i in sale.items if i.product_id == weighed_product.id][0]
        assert item.unit_price == Decimal('18.90')
        assert item.product_name == 'Açaí (kg)'
        assert sale.subtotal == Decimal('38.90')

    def test_weighed_product_needs_price(self, session, open_comanda, weighed_product):
        with pytest.raises(ValidationError):
            comanda_service.add_items(session, open_comanda.id, [{'product_id': weighed_product.id, 'quantity': 1}])

    def test_rejects_bad_quantity(self, session, open_comanda, product):
        with pytest.raises(ValidationError):
            comanda_service.add_items(session, open_comanda.id, [{'product_id': product.id, 'quantity': 0}])

    def test_checks_stock_including_existing_items(self, session, open_comanda, product):
        # 2 already on the comanda, 5 in stock
        with pytest.raises(InsufficientStockError):
            comanda_service.add_items(session, open_comanda.id, [{'product_id': product.id, 'quantity': 4}])

        assert session.query(SaleItem).count() == 1

    def test_closed_comanda(self, session, open_comanda):
        close_comanda(session, open_comanda.id, 'cash')
        with pytest.raises(SaleAlreadySettledError):
            comanda_service.add_items(session, open_comanda.id, [{'product_id': 1, 'quantity': 1}])


class TestUpdateComanda:

    def test_change_notes_keeps_customer(self, session, open_comanda, customer):
        sale = comanda_service.update_comanda(session, open_comanda.id, notes='Mesa 7')

        assert sale.notes == 'Mesa 7'
        assert sale.customer_id == customer.id

    def test_clear_customer_keeps_label(self, session, open_comanda):
        sale = comanda_service.update_comanda(session, open_comanda.id, customer_id=None)
        assert sale.customer_id is None

    def test_cannot_remove_all_identification(self, session, open_comanda):
        with pytest.raises(ValidationError):
            comanda_service.update_comanda(session, open_comanda.id, customer_id=None, notes='')

    def test_remove_item(self, session, open_comanda, product, unlimited_product):
        sale = comanda_service.add_items(
            session, open_comanda.id, [{'product_id': unlimited_product.id, 'quantity': 1}]
        )
        removed_id = [i.id for i in sale.items if i.product_id == unlimited_product.id][0]

        sale = comanda_service.update_comanda(session, open_comanda.id, remove_item_ids=[removed_id])

        assert [i.product_id for i in sale.items] == [product.id]
        assert sale.subtotal == Decimal('20.00')

    def test_cannot_remove_every_item(self, session, open_comanda):
        item_ids = [i.id for i in open_comanda.items]
        with pytest.raises(ValidationError):
            comanda_service.update_comanda(session, open_comanda.id, remove_item_ids=item_ids)

    def test_unknown_item(self, session, open_comanda):
        with pytest.raises(NotFoundError):
            comanda_service.update_comanda(session, open_comanda.id, remove_item_ids=[9999])


class TestDeleteComanda:

    def test_delete_open(self, session, open_comanda):
        sale_id = open_comanda.id
        result = comanda_service.delete_comanda(session, sale_id)

        assert result['success'] is True
        assert result['items_deleted'] == 1
        assert session.get(Sale, sale_id) is None
        assert session.query(SaleItem).count() == 0

    def test_completed_sale_is_never_deleted(self, session, open_comanda):
        close_comanda(session, open_comanda.id, 'pix')

        with pytest.raises(SaleAlreadySettledError) as exc_info:
            comanda_service.delete_comanda(session, open_comanda.id)
        assert exc_info.value.status_code == 409
        assert session.get(Sale, open_comanda.id).status == SaleStatus.COMPLETED


class TestQueries:

    def test_list_open_comandas(self, session, open_comanda):
        second = comanda_service.open_comanda(session, notes='Balcão')
        close_comanda(session, open_comanda.id, 'cash')

        assert [s.id for s in comanda_service.list_open_comandas(session)] == [second.id]

    def test_get_sale_unknown(self, session):
        with pytest.raises(NotFoundError):
            comanda_service.get_sale(session, 123)
