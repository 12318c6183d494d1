"""
HTTP tests for the JSON endpoints.

Request teardown removes the scoped session, so ids are read from fixtures
before the first request.
"""

import pytest
from datetime import date, datetime, timedelta


class TestAuthAndHealth:

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json()['database'] == 'connected'

    def test_cache_health_without_redis(self, client):
        response = client.get('/health/cache')
        assert response.status_code == 200
        assert response.get_json()['status'] == 'degraded'

    @pytest.mark.parametrize('method, url', [
        ('get', '/comandas/'),
        ('post', '/comandas/'),
        ('post', '/sales/checkout'),
        ('get', '/coupons/expiring'),
        ('get', '/products/low-stock'),
    ])
    def test_requires_login(self, client, method, url):
        response = getattr(client, method)(url, json={})

        assert response.status_code == 401
        assert response.get_json()['status'] == 'error'

    def test_metrics(self, client):
        response = client.get('/metrics')
        assert response.status_code == 200
        assert b'pdv_settlements_total' in response.data


class TestComandaEndpoints:

    def test_full_comanda_flow(self, authenticated_client, customer, product):
        customer_id, product_id = customer.id, product.id

        response = authenticated_client.post('/comandas/', json={'customer_id': customer_id, 'notes': 'Mesa 1'})
        assert response.status_code == 201
        sale_id = response.get_json()['comanda']['id']

        response = authenticated_client.post(
            f'/comandas/{sale_id}/items',
            json={'items': [{'product_id': product_id, 'quantity': 5}]}
        )
        assert response.status_code == 200
        assert response.get_json()['comanda']['subtotal'] == '50.00'

        response = authenticated_client.post(f'/comandas/{sale_id}/preview', json={})
        data = response.get_json()
        assert data['pricing']['total'] == '50.00'
        assert data['loyalty_offer']['discount_value'] == '10'

        response = authenticated_client.post(f'/comandas/{sale_id}/close', json={'payment_method': 'pix'})
        assert response.status_code == 200
        data = response.get_json()
        assert data['sale']['status'] == 'completed'
        assert data['sale']['payment_method'] == 'pix'
        assert data['loyalty_coupon']['code'].startswith('FIDELIDADE-')
        assert 'CUPOM CASHBACK' in data['loyalty_message']
        assert data['whatsapp_url'].startswith('https://wa.me/5511987654321?text=')

        response = authenticated_client.post(f'/comandas/{sale_id}/close', json={'payment_method': 'pix'})
        assert response.status_code == 409
        assert response.get_json()['sale_id'] == sale_id

    def test_preview_rejects_closed_comanda(self, authenticated_client, open_comanda):
        sale_id = open_comanda.id
        authenticated_client.post(f'/comandas/{sale_id}/close', json={'payment_method': 'cash'})

        response = authenticated_client.post(f'/comandas/{sale_id}/preview', json={})

        assert response.status_code == 409
        assert response.get_json()['sale_id'] == sale_id
        assert 'pricing' not in response.get_json()

    def test_open_requires_identification(self, authenticated_client):
        response = authenticated_client.post('/comandas/', json={})

        assert response.status_code == 400
        assert 'errors' in response.get_json()

    def test_detail_lists_available_coupons(self, authenticated_client, open_comanda, customer, make_coupon):
        coupon_id = make_coupon(customer).id
        sale_id = open_comanda.id

        data = authenticated_client.get(f'/comandas/{sale_id}').get_json()

        assert data['comanda']['notes'] == 'Mesa 4'
        assert [c['id'] for c in data['available_coupons']] == [coupon_id]

    def test_close_with_coupon_and_manual_discount(self, authenticated_client, open_comanda, customer, make_coupon):
        coupon_id = make_coupon(customer).id
        sale_id = open_comanda.id

        response = authenticated_client.post(f'/comandas/{sale_id}/close', json={
            'payment_method': 'cash',
            'coupon_id': coupon_id,
            'discount_type': 'percentage',
            'discount_value': 10
        })

        data = response.get_json()
        assert response.status_code == 200
        assert data['pricing']['coupon_discount'] == '5.00'
        assert data['pricing']['manual_discount_amount'] == '2.00'
        assert data['sale']['total'] == '13.00'
        assert data['loyalty_coupon'] is None

    def test_close_requires_payment_method(self, authenticated_client, open_comanda):
        sale_id = open_comanda.id

        response = authenticated_client.post(f'/comandas/{sale_id}/close', json={})

        assert response.status_code == 400
        assert response.get_json()['message'] == 'Selecione a forma de pagamento'

    def test_patch_and_delete(self, authenticated_client, open_comanda):
        sale_id = open_comanda.id

        response = authenticated_client.patch(f'/comandas/{sale_id}', json={'notes': 'Mesa 9'})
        assert response.get_json()['comanda']['notes'] == 'Mesa 9'

        response = authenticated_client.delete(f'/comandas/{sale_id}')
        assert response.status_code == 200
        assert response.get_json()['items_deleted'] == 1

        assert authenticated_client.get(f'/comandas/{sale_id}').status_code == 404

    def test_list(self, authenticated_client, open_comanda):
        sale_id = open_comanda.id
        data = authenticated_client.get('/comandas/').get_json()
        assert [c['id'] for c in data['comandas']] == [sale_id]


class TestSalesEndpoints:

    def test_preview(self, authenticated_client, product):
        product_id = product.id

        response = authenticated_client.post('/sales/preview', json={
            'items': [{'product_id': product_id, 'quantity': 2}],
            'discount_type': 'fixed',
            'discount_value': '5'
        })

        data = response.get_json()
        assert response.status_code == 200
        assert data['pricing']['subtotal'] == '20.00'
        assert data['pricing']['total'] == '15.00'
        assert data['loyalty_offer'] is None

    def test_checkout_and_idempotency(self, authenticated_client, product):
        product_id = product.id
        payload = {'items': [{'product_id': product_id, 'quantity': 2}], 'payment_method': 'debit'}
        headers = {'Idempotency-Key': 'caixa1-0001'}

        response = authenticated_client.post('/sales/checkout', json=payload, headers=headers)
        assert response.status_code == 201
        sale = response.get_json()['sale']
        assert sale['total'] == '20.00'
        assert len(sale['items']) == 1

        response = authenticated_client.post('/sales/checkout', json=payload, headers=headers)
        assert response.status_code == 409
        assert response.get_json()['sale_id'] == sale['id']

        detail = authenticated_client.get(f"/sales/{sale['id']}").get_json()
        assert detail['sale']['status'] == 'completed'

    def test_checkout_insufficient_stock(self, authenticated_client, product):
        product_id = product.id

        response = authenticated_client.post('/sales/checkout', json={
            'items': [{'product_id': product_id, 'quantity': 6}],
            'payment_method': 'cash'
        })

        data = response.get_json()
        assert response.status_code == 409
        assert 'Estoque insuficiente' in data['message']
        assert data['product_name'] == 'Churros de Doce de Leite'
        assert data['required'] == 6
        assert data['available'] == 5

    def test_checkout_returns_reward_message(self, authenticated_client, customer, unlimited_product):
        customer_id, product_id = customer.id, unlimited_product.id

        response = authenticated_client.post('/sales/checkout', json={
            'items': [{'product_id': product_id, 'quantity': 10}],
            'payment_method': 'pix',
            'customer_id': customer_id
        })

        data = response.get_json()
        assert response.status_code == 201
        assert data['loyalty_coupon']['code'].startswith('FIDELIDADE-')
        assert 'a partir de R$30,00' in data['loyalty_message']
        assert data['whatsapp_url'].startswith('https://wa.me/5511987654321?text=')

    def test_checkout_without_reward_has_no_message(self, authenticated_client, unlimited_product):
        product_id = unlimited_product.id

        response = authenticated_client.post('/sales/checkout', json={
            'items': [{'product_id': product_id, 'quantity': 1}],
            'payment_method': 'cash'
        })

        data = response.get_json()
        assert data['loyalty_coupon'] is None
        assert 'loyalty_message' not in data

    def test_checkout_without_items(self, authenticated_client):
        response = authenticated_client.post('/sales/checkout', json={'payment_method': 'cash'})
        assert response.status_code == 400

    def test_manual_loyalty_coupon_endpoint(self, authenticated_client, customer, unlimited_product, app):
        customer_id, product_id = customer.id, unlimited_product.id
        app.config['LOYALTY_AUTO_ISSUE'] = False
        try:
            response = authenticated_client.post('/sales/checkout', json={
                'items': [{'product_id': product_id, 'quantity': 20}],
                'payment_method': 'cash',
                'customer_id': customer_id
            })
        finally:
            app.config['LOYALTY_AUTO_ISSUE'] = True

        data = response.get_json()
        assert data['loyalty_coupon'] is None
        assert data['loyalty_offer']['discount_value'] == '15'
        sale_id = data['sale']['id']

        first = authenticated_client.post(f'/sales/{sale_id}/loyalty-coupon')
        second = authenticated_client.post(f'/sales/{sale_id}/loyalty-coupon')

        assert first.status_code == 201
        assert first.get_json()['coupon']['id'] == second.get_json()['coupon']['id']
        assert first.get_json()['whatsapp_url'].startswith('https://wa.me/55')

    def test_summary(self, authenticated_client, unlimited_product):
        product_id = unlimited_product.id
        authenticated_client.post('/sales/checkout', json={
            'items': [{'product_id': product_id, 'quantity': 3}],
            'payment_method': 'pix'
        })

        data = authenticated_client.get('/sales/summary').get_json()

        assert data['sale_count'] == 1
        assert data['total'] == '15.00'
        assert data['by_payment_method']['pix']['count'] == 1

    def test_summary_rejects_bad_dates(self, authenticated_client):
        response = authenticated_client.get('/sales/summary?start=18/10/2026')
        assert response.status_code == 400


class TestCouponEndpoints:

    def test_create_list_message_deactivate(self, authenticated_client, customer):
        customer_id = customer.id
        expire_on = (date.today() + timedelta(days=10)).isoformat()

        response = authenticated_client.post('/coupons/', json={
            'customer_id': customer_id,
            'discount_type': 'fixed',
            'discount_value': '7.50',
            'expire_at': expire_on,
            'code': 'bemvindo'
        })
        assert response.status_code == 201
        coupon = response.get_json()['coupon']
        assert coupon['code'] == 'BEMVINDO'
        assert coupon['expire_at'] == f'{expire_on}T23:59:59'

        listed = authenticated_client.get(f'/coupons/customer/{customer_id}').get_json()['coupons']
        assert [c['id'] for c in listed] == [coupon['id']]

        message = authenticated_client.get(f"/coupons/{coupon['id']}/message").get_json()
        assert 'R$7,50 de cashback' in message['message']
        assert message['whatsapp_url'].startswith('https://wa.me/5511987654321')

        response = authenticated_client.post(f"/coupons/{coupon['id']}/deactivate")
        assert response.get_json()['coupon']['is_active'] is False
        assert authenticated_client.get(f'/coupons/customer/{customer_id}').get_json()['coupons'] == []

    def test_create_rejects_percentage_over_100(self, authenticated_client, customer):
        customer_id = customer.id
        response = authenticated_client.post('/coupons/', json={
            'customer_id': customer_id,
            'discount_type': 'percentage',
            'discount_value': '120',
            'expire_at': (date.today() + timedelta(days=1)).isoformat()
        })
        assert response.status_code == 400

    def test_expiring(self, authenticated_client, customer, make_coupon):
        coupon_id = make_coupon(customer, expire_at=datetime.now() + timedelta(days=1)).id

        data = authenticated_client.get('/coupons/expiring?days=2').get_json()

        assert [c['id'] for c in data['coupons']] == [coupon_id]
        assert data['coupons'][0]['customer']['name'] == 'Maria Silva'


class TestProductEndpoints:

    def test_stock_entry(self, authenticated_client, product):
        product_id = product.id

        response = authenticated_client.post(f'/products/{product_id}/stock', json={'quantity': 3, 'reason': 'Compra'})

        data = response.get_json()
        assert response.status_code == 201
        assert data['movement']['movement_type'] == 'entry'
        assert data['product']['current_stock'] == 8

    def test_stock_requires_one_value(self, authenticated_client, product):
        product_id = product.id
        response = authenticated_client.post(f'/products/{product_id}/stock', json={'quantity': 3, 'new_stock': 1})
        assert response.status_code == 400

    def test_low_stock(self, authenticated_client, product):
        product_id = product.id
        authenticated_client.post(f'/products/{product_id}/stock', json={'new_stock': 0})

        data = authenticated_client.get('/products/low-stock').get_json()
        assert [p['id'] for p in data['products']] == [product_id]
