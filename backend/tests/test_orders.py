"""
Order placement, cancel/refund, delete and import/export tests.
"""

import csv
import io
import json

import pytest
from sqlalchemy.exc import OperationalError

from stockdesk.extensions import db
from stockdesk.models import Order, OrderItem, ORDER_STATUS_CANCELED, ORDER_STATUS_REFUNDED
from stockdesk.services import order_service


class TestOrderPricing:
    def test_catalog_discount_applied(self, client, make_product, stock_of):
        """price 10, product discount 2, qty 2 -> unit 8, line 16, stock -2."""
        product_id = make_product('Widget', quantity=10, price=10.0, discount=2.0).id

        resp = client.post('/api/orders', json={'items': [{'product_id': product_id, 'quantity': 2}]})
        assert resp.status_code == 201
        body = resp.get_json()
        assert body['id'] == body['order']['id']

        item = body['order']['items'][0]
        assert item['unit_price'] == pytest.approx(8.0)
        assert item['total_price'] == pytest.approx(16.0)
        assert item['product_name'] == 'Widget'
        assert body['order']['total'] == pytest.approx(16.0)
        assert body['order']['status'] == 'pending'
        assert stock_of(product_id) == 8

    def test_total_is_subtotal_minus_discount_plus_tax(self, make_product, place_order, stock_of):
        a = make_product('A', quantity=5, price=3.0).id
        b = make_product('B', quantity=5, price=7.5).id

        order = place_order(
            [
                {'product_id': a, 'quantity': 3},
                {'product_id': b, 'quantity': 1},
                {'product_name': 'Gift wrap', 'quantity': 2, 'unit_price': 1.25},
            ],
            tax=2.0,
            discount=1.5,
        )

        subtotal = sum(i['quantity'] * i['unit_price'] for i in order['items'])
        assert subtotal == pytest.approx(9.0 + 7.5 + 2.5)
        assert order['total'] == pytest.approx(subtotal - 1.5 + 2.0)
        assert stock_of(a) == 2
        assert stock_of(b) == 4

    def test_supplied_unit_price_wins(self, make_product, place_order):
        product_id = make_product('Widget', price=10.0, discount=2.0).id
        order = place_order([{'product_id': product_id, 'quantity': 1, 'unit_price': 6.0}])
        assert order['items'][0]['unit_price'] == pytest.approx(6.0)

    def test_supplied_discount_overrides_product_discount(self, make_product, place_order):
        product_id = make_product('Widget', price=10.0, discount=2.0).id
        order = place_order([{'product_id': product_id, 'quantity': 1, 'discount': 5}])
        assert order['items'][0]['unit_price'] == pytest.approx(5.0)
        assert order['items'][0]['discount'] == pytest.approx(5.0)

    def test_price_clamps_at_zero(self, make_product, place_order):
        product_id = make_product('Widget', price=3.0, discount=5.0).id
        order = place_order([{'product_id': product_id, 'quantity': 2}])
        assert order['items'][0]['unit_price'] == 0
        assert order['total'] == 0

    def test_ad_hoc_item(self, place_order):
        order = place_order([{'name': 'Delivery', 'quantity': 1, 'unit_price': 12.0, 'discount': 2.0}])
        item = order['items'][0]
        assert item['product_id'] is None
        assert item['product_name'] == 'Delivery'
        assert item['unit_price'] == pytest.approx(10.0)

    def test_repeated_product_decrements_once_per_line(self, make_product, place_order, stock_of):
        product_id = make_product('Widget', quantity=10).id
        place_order([
            {'product_id': product_id, 'quantity': 2},
            {'product_id': product_id, 'quantity': 3},
        ])
        assert stock_of(product_id) == 5

    def test_oversell_allowed_by_default(self, make_product, place_order, stock_of):
        product_id = make_product('Widget', quantity=1).id
        place_order([{'product_id': product_id, 'quantity': 3}])
        assert stock_of(product_id) == -2


class TestOrderValidation:
    def test_empty_items_rejected(self, client):
        assert client.post('/api/orders', json={'items': []}).status_code == 400
        assert client.post('/api/orders', json={}).status_code == 400
        assert db.session.query(Order).count() == 0

    @pytest.mark.parametrize('quantity', [0, -1, 1.5, 'two', None])
    def test_bad_quantity_rejected(self, client, make_product, quantity):
        product_id = make_product('Widget').id
        resp = client.post('/api/orders', json={'items': [{'product_id': product_id, 'quantity': quantity}]})
        assert resp.status_code == 400

    def test_unknown_product_persists_nothing(self, client, make_product, stock_of):
        product_id = make_product('Widget', quantity=10).id
        resp = client.post('/api/orders', json={'items': [
            {'product_id': product_id, 'quantity': 2},
            {'product_id': 9999, 'quantity': 1},
        ]})
        assert resp.status_code == 400
        assert resp.get_json()['details'] == {'product_id': 9999}
        assert db.session.query(Order).count() == 0
        assert db.session.query(OrderItem).count() == 0
        assert stock_of(product_id) == 10

    def test_oversell_rejected_when_disabled(self, app, client, make_product, stock_of):
        app.config['ALLOW_NEGATIVE_STOCK'] = False
        product_id = make_product('Widget', quantity=2).id

        resp = client.post('/api/orders', json={'items': [
            {'product_id': product_id, 'quantity': 2},
            {'product_id': product_id, 'quantity': 1},
        ]})
        assert resp.status_code == 400
        details = resp.get_json()['details']['items']
        assert details == [{'product_id': product_id, 'requested_quantity': 3, 'on_hand': 2}]
        assert stock_of(product_id) == 2
        assert db.session.query(Order).count() == 0

    @pytest.mark.parametrize('literal', ['NaN', 'Infinity', '-Infinity'])
    def test_non_finite_amounts_rejected(self, client, literal):
        body = '{"items": [{"name": "A", "quantity": 1, "unit_price": 1}], "tax": %s}' % literal
        resp = client.post('/api/orders', data=body, content_type='application/json')
        assert resp.status_code == 400
        assert 'finite' in resp.get_json()['error']

        body = '{"items": [{"name": "A", "quantity": 1, "unit_price": %s}]}' % literal
        resp = client.post('/api/orders', data=body, content_type='application/json')
        assert resp.status_code == 400
        assert db.session.query(Order).count() == 0

    @pytest.mark.parametrize('product_id', [1.5, True, False, 'abc', [1]])
    def test_bad_product_id_rejected(self, client, make_product, stock_of, product_id):
        real_id = make_product('Widget', quantity=10).id
        resp = client.post('/api/orders', json={'items': [{'product_id': product_id, 'quantity': 1}]})
        assert resp.status_code == 400
        assert 'product_id' in resp.get_json()['error']
        assert stock_of(real_id) == 10
        assert db.session.query(Order).count() == 0

    def test_integral_product_id_forms_accepted(self, make_product, place_order, stock_of):
        product_id = make_product('Widget', quantity=10).id
        place_order([{'product_id': float(product_id), 'quantity': 1}])
        place_order([{'product_id': str(product_id), 'quantity': 1}])
        assert stock_of(product_id) == 8


class TestOrderLifecycle:
    def test_cancel_restores_stock_once(self, client, make_product, place_order, stock_of):
        product_id = make_product('Widget', quantity=10).id
        order = place_order([{'product_id': product_id, 'quantity': 4}])
        assert stock_of(product_id) == 6

        resp = client.post(f"/api/orders/{order['id']}/cancel")
        assert resp.status_code == 200
        assert resp.get_json()['order']['status'] == ORDER_STATUS_CANCELED
        assert stock_of(product_id) == 10

        resp = client.post(f"/api/orders/{order['id']}/cancel")
        assert resp.status_code == 400
        assert stock_of(product_id) == 10

    def test_cancel_then_delete_does_not_restore_again(self, client, make_product, place_order, stock_of):
        product_id = make_product('Widget', quantity=10).id
        order = place_order([{'product_id': product_id, 'quantity': 4}])

        client.post(f"/api/orders/{order['id']}/cancel")
        resp = client.delete(f"/api/orders/{order['id']}")
        assert resp.status_code == 200
        assert stock_of(product_id) == 10
        assert db.session.query(OrderItem).count() == 0

    def test_delete_pending_order_keeps_stock(self, client, make_product, place_order, stock_of):
        product_id = make_product('Widget', quantity=10).id
        order = place_order([{'product_id': product_id, 'quantity': 4}])
        client.delete(f"/api/orders/{order['id']}")
        assert stock_of(product_id) == 6

    def test_refund_restores_stock(self, client, make_product, place_order, stock_of):
        product_id = make_product('Widget', quantity=5).id
        order = place_order([{'product_id': product_id, 'quantity': 5}])
        resp = client.post(f"/api/orders/{order['id']}/refund")
        assert resp.status_code == 200
        assert resp.get_json()['order']['status'] == ORDER_STATUS_REFUNDED
        assert stock_of(product_id) == 5

    def test_cross_transition_only_relabels(self, client, make_product, place_order, stock_of):
        product_id = make_product('Widget', quantity=5).id
        order = place_order([{'product_id': product_id, 'quantity': 2}])

        client.post(f"/api/orders/{order['id']}/cancel")
        resp = client.post(f"/api/orders/{order['id']}/refund")
        assert resp.status_code == 200
        assert resp.get_json()['order']['status'] == ORDER_STATUS_REFUNDED
        assert stock_of(product_id) == 5

    def test_cancel_skips_deleted_products(self, client, make_product, place_order, stock_of):
        gone = make_product('Gone', quantity=5).id
        kept = make_product('Kept', quantity=5).id
        order = place_order([
            {'product_id': gone, 'quantity': 1},
            {'product_id': kept, 'quantity': 2},
        ])
        client.delete(f'/api/products/{gone}')

        resp = client.post(f"/api/orders/{order['id']}/cancel")
        assert resp.status_code == 200
        assert stock_of(kept) == 5

    def test_missing_order_is_404(self, client):
        assert client.get('/api/orders/42').status_code == 404
        assert client.post('/api/orders/42/cancel').status_code == 404
        assert client.post('/api/orders/42/refund').status_code == 404
        assert client.delete('/api/orders/42').status_code == 404

    def test_list_newest_first_and_get_with_items(self, client, place_order):
        first = place_order([{'name': 'A', 'quantity': 1, 'unit_price': 1}])
        second = place_order([{'name': 'B', 'quantity': 1, 'unit_price': 1}])

        listed = client.get('/api/orders').get_json()
        assert [o['id'] for o in listed] == [second['id'], first['id']]
        assert 'items' not in listed[0]

        detail = client.get(f"/api/orders/{first['id']}").get_json()
        assert detail['items'][0]['product_name'] == 'A'

    def test_delete_all(self, client, place_order):
        place_order([{'name': 'A', 'quantity': 1, 'unit_price': 1}])
        place_order([{'name': 'B', 'quantity': 1, 'unit_price': 1}])
        resp = client.delete('/api/orders/delete-all')
        assert resp.get_json()['deleted'] == 2
        assert db.session.query(OrderItem).count() == 0


class TestOrderExportImport:
    def test_export_then_import_creates_new_orders(self, client, make_product, place_order, stock_of):
        product_id = make_product('Widget', quantity=10, price=4.0).id
        place_order([{'product_id': product_id, 'quantity': 2}], customer_name='Ann', tax=1.0)

        exported = client.get('/api/orders/export?format=csv')
        assert exported.status_code == 200
        rows = list(csv.DictReader(io.StringIO(exported.data.decode('utf-8'))))
        assert rows[0]['customer_name'] == 'Ann'
        assert json.loads(rows[0]['items'])[0]['quantity'] == 2

        resp = client.post(
            '/api/orders/import',
            data={'file': (io.BytesIO(exported.data), 'orders.csv')},
            content_type='multipart/form-data',
        )
        summary = resp.get_json()
        assert summary['created'] == 1
        assert summary['errors'] == 0

        orders = db.session.query(Order).order_by(Order.id).all()
        assert len(orders) == 2
        assert orders[1].total == pytest.approx(9.0)
        assert orders[1].items[0].product_id == product_id
        # Import never moves stock
        assert stock_of(product_id) == 8

    def test_import_falls_back_to_supplied_total(self, app):
        summary = order_service.import_orders([
            {'customer_name': 'Bob', 'total': '15.5', 'items': '[]', 'status': 'refunded'},
        ])
        assert summary['created'] == 1
        order = db.session.query(Order).one()
        assert order.total == pytest.approx(15.5)
        assert order.status == ORDER_STATUS_REFUNDED

    def test_import_nulls_unknown_product_and_counts_bad_rows(self, app):
        summary = order_service.import_orders([
            {'items': json.dumps([{'product_id': 777, 'product_name': 'Ghost', 'quantity': 1, 'unit_price': 2}])},
            {'items': 'not json'},
            {'status': 'lost'},
        ])
        assert summary['created'] == 1
        assert summary['errors'] == 2
        assert [d['row'] for d in summary['error_details']] == [3, 4]
        item = db.session.query(OrderItem).one()
        assert item.product_id is None
        assert item.product_name == 'Ghost'

    def test_xlsx_export(self, client, place_order):
        place_order([{'name': 'A', 'quantity': 1, 'unit_price': 1}])
        resp = client.get('/api/orders/export?format=xlsx')
        assert resp.status_code == 200
        assert resp.data[:2] == b'PK'


def _disk_failure(*args, **kwargs):
    raise OperationalError('SELECT 1', {}, Exception('disk I/O error'))


class TestOrderStorageErrors:
    @pytest.mark.parametrize('path', ['/api/orders/1', '/api/orders/1/invoice/pdf'])
    def test_read_failure_is_json_500(self, client, monkeypatch, path):
        monkeypatch.setattr(order_service, 'get_order', _disk_failure)
        resp = client.get(path)
        assert resp.status_code == 500
        assert resp.get_json() == {'error': 'disk I/O error'}

    def test_import_failure_is_json_500(self, client, monkeypatch):
        monkeypatch.setattr(order_service, 'import_orders', _disk_failure)
        upload = io.BytesIO(b'customer_name,total\nBob,5\n')
        resp = client.post(
            '/api/orders/import',
            data={'file': (upload, 'orders.csv')},
            content_type='multipart/form-data',
        )
        assert resp.status_code == 500
        assert resp.get_json() == {'error': 'disk I/O error'}
