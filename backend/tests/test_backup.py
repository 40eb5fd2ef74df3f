"""
Backup download, restore fallbacks and the spreadsheet bundle.
"""

import io
import os
import sqlite3
import zipfile

import pytest

from stockdesk.extensions import db
from stockdesk.models import Brand, Product, Order, TABLE_ORDER
from stockdesk.services import backup_service


def _row_counts():
    db.session.expire_all()
    return {
        'brands': db.session.query(Brand).count(),
        'products': db.session.query(Product).count(),
        'orders': db.session.query(Order).count(),
    }


def _download(client):
    resp = client.get('/api/backup/download')
    assert resp.status_code == 200
    data = resp.data
    resp.close()
    return data



def _legacy_database(tmp_path):
    """An older two-table layout: no discount column and no order tables."""
    path = tmp_path / 'legacy.db'
    conn = sqlite3.connect(path)
    conn.execute('CREATE TABLE brands (id INTEGER PRIMARY KEY, name TEXT NOT NULL)')
    conn.execute(
        'CREATE TABLE products (id INTEGER PRIMARY KEY, name TEXT NOT NULL, '
        'sku TEXT, quantity INTEGER, price REAL)'
    )
    conn.execute("INSERT INTO brands VALUES (1, 'Old brand')")
    conn.execute("INSERT INTO products VALUES (1, 'Old widget', 'OW-1', 3, 4.5)")
    conn.commit()
    conn.close()
    return path

@pytest.fixture
def seeded(make_brand, make_product, place_order):
    brand_id = make_brand('Acme').id
    product_id = make_product('Widget', sku='W-1', quantity=10, brand_id=brand_id).id
    place_order([{'product_id': product_id, 'quantity': 1}])
    return product_id


class TestBackupDownload:
    def test_download_is_sqlite_file(self, client, seeded):
        resp = client.get('/api/backup/download')
        assert resp.status_code == 200
        assert resp.data.startswith(backup_service.SQLITE_HEADER)
        disposition = resp.headers['Content-Disposition']
        assert 'inventory-backup-' in disposition
        resp.close()

    def test_snapshot_file_removed_after_response(self, app, client, seeded):
        _download(client)
        leftovers = [f for f in os.listdir(app.config['BACKUP_DIR']) if f.startswith('snapshot-')]
        assert leftovers == []

    def test_head_request_removes_snapshot(self, app, client, seeded):
        resp = client.head('/api/backup/download')
        assert resp.status_code == 200
        resp.close()
        leftovers = [f for f in os.listdir(app.config['BACKUP_DIR']) if f.startswith('snapshot-')]
        assert leftovers == []

    def test_locked_copy_fallback(self, app, client, seeded, monkeypatch):
        def broken_vacuum(live_path, dest):
            raise sqlite3.OperationalError('VACUUM INTO not supported')

        monkeypatch.setattr(backup_service, '_vacuum_into', broken_vacuum)
        data = _download(client)
        assert data.startswith(backup_service.SQLITE_HEADER)

    def test_memory_database_is_404(self, tmp_path):
        from stockdesk import create_app

        app = create_app({
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'BACKUP_DIR': str(tmp_path / 'backups'),
        })
        resp = app.test_client().get('/api/backup/download')
        assert resp.status_code == 404


class TestRestore:
    def test_round_trip_keeps_row_counts(self, client, seeded):
        before = _row_counts()
        data = _download(client)

        # Change the live database after the snapshot
        client.post('/api/brands', json={'name': 'Later'})
        client.delete('/api/orders/delete-all')
        assert _row_counts() != before

        resp = client.post(
            '/api/backup/restore',
            data=data,
            content_type='application/octet-stream',
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body['strategy'] == backup_service.RESTORE_IMPORT
        assert body['restart_required'] is False
        assert _row_counts() == before

    def test_multipart_upload(self, client, seeded):
        data = _download(client)
        resp = client.post(
            '/api/backup/restore',
            data={'file': (io.BytesIO(data), 'backup.db')},
            content_type='multipart/form-data',
        )
        assert resp.status_code == 200
        assert resp.get_json()['strategy'] == backup_service.RESTORE_IMPORT

    def test_empty_payload(self, client):
        resp = client.post('/api/backup/restore', data=b'', content_type='application/octet-stream')
        assert resp.status_code == 400

    def test_not_a_sqlite_file(self, client):
        resp = client.post('/api/backup/restore', data=b'hello world', content_type='application/octet-stream')
        assert resp.status_code == 400

    def test_sqlite_file_without_known_tables(self, client, tmp_path):
        foreign = tmp_path / 'other.db'
        conn = sqlite3.connect(foreign)
        conn.execute('CREATE TABLE unrelated (id INTEGER PRIMARY KEY)')
        conn.commit()
        conn.close()

        resp = client.post(
            '/api/backup/restore',
            data=foreign.read_bytes(),
            content_type='application/octet-stream',
        )
        assert resp.status_code == 400
        assert os.path.exists(resp.get_json()['saved_path'])

    def test_replace_fallback(self, app, client, seeded, monkeypatch):
        before = _row_counts()
        data = _download(client)
        client.post('/api/brands', json={'name': 'Later'})

        def broken_import(live_path, staged_path):
            raise sqlite3.OperationalError('database is locked')

        monkeypatch.setattr(backup_service, 'import_tables', broken_import)
        resp = client.post('/api/backup/restore', data=data, content_type='application/octet-stream')
        assert resp.status_code == 200
        body = resp.get_json()
        assert body['strategy'] == backup_service.RESTORE_REPLACE
        assert body['restart_required'] is True
        assert os.path.exists(body['safety_copy_path'])
        assert _row_counts() == before

    def test_staged_fallback(self, client, seeded, monkeypatch):
        data = _download(client)

        def broken_import(live_path, staged_path):
            raise sqlite3.OperationalError('database is locked')

        def broken_replace(live_path, staged_path):
            raise PermissionError('file in use')

        monkeypatch.setattr(backup_service, 'import_tables', broken_import)
        monkeypatch.setattr(backup_service, '_replace_file', broken_replace)
        resp = client.post('/api/backup/restore', data=data, content_type='application/octet-stream')
        assert resp.status_code == 202
        body = resp.get_json()
        assert body['strategy'] == backup_service.RESTORE_STAGED
        assert os.path.exists(body['saved_path'])


    def test_legacy_two_table_file_restores_by_import(self, client, seeded, tmp_path):
        legacy = _legacy_database(tmp_path)
        resp = client.post('/api/backup/restore', data=legacy.read_bytes(), content_type='application/octet-stream')
        assert resp.status_code == 200
        assert resp.get_json()['strategy'] == backup_service.RESTORE_IMPORT

        resp = client.get('/api/products')
        assert resp.status_code == 200
        [product] = resp.get_json()
        assert product['name'] == 'Old widget'
        assert product['discount'] == 0
        assert product['unit'] == 'pcs'
        assert product['reorder_level'] == 10
        assert client.get('/api/orders').status_code == 200

    def test_incomplete_file_is_staged_not_swapped_in(self, client, seeded, tmp_path, monkeypatch):
        legacy = _legacy_database(tmp_path)
        replaced = []

        def broken_import(live_path, staged_path):
            raise sqlite3.OperationalError('database is locked')

        monkeypatch.setattr(backup_service, 'import_tables', broken_import)
        monkeypatch.setattr(backup_service, '_replace_file', lambda *args: replaced.append(args))
        resp = client.post('/api/backup/restore', data=legacy.read_bytes(), content_type='application/octet-stream')
        assert resp.status_code == 202
        body = resp.get_json()
        assert body['strategy'] == backup_service.RESTORE_STAGED
        assert os.path.exists(body['saved_path'])
        assert replaced == []

        assert client.get('/api/categories').status_code == 200
        assert _row_counts()['products'] == 1



class TestLockedCopyWal:
    def test_copied_wal_is_folded_into_snapshot(self, app, tmp_path):
        source = tmp_path / 'wal-source.db'
        writer = sqlite3.connect(source)
        try:
            assert writer.execute('PRAGMA journal_mode=WAL').fetchone()[0] == 'wal'
            writer.execute('PRAGMA wal_autocheckpoint=0')
            writer.execute('CREATE TABLE brands (id INTEGER PRIMARY KEY, name TEXT)')
            writer.execute("INSERT INTO brands VALUES (1, 'Only in the WAL')")
            writer.commit()
            assert os.path.getsize(str(source) + '-wal') > 0

            dest = tmp_path / 'copy.db'
            dest.write_bytes(source.read_bytes())
            (tmp_path / 'copy.db-wal').write_bytes((tmp_path / 'wal-source.db-wal').read_bytes())

            backup_service._fold_wal(str(dest))
        finally:
            writer.close()

        assert not os.path.exists(str(dest) + '-wal')
        conn = sqlite3.connect(dest)
        try:
            rows = conn.execute('SELECT name FROM brands').fetchall()
        finally:
            conn.close()
        assert rows == [('Only in the WAL',)]


class TestImportTables:
    def test_copies_shared_columns_only(self, app, seeded, tmp_path):
        staged = tmp_path / 'staged.db'
        conn = sqlite3.connect(staged)
        conn.execute('CREATE TABLE brands (id INTEGER PRIMARY KEY, name TEXT, legacy TEXT, created_at TEXT)')
        conn.execute("INSERT INTO brands VALUES (5, 'Old brand', 'x', '2024-01-01 00:00:00')")
        conn.commit()
        conn.close()

        live_path = backup_service.database_path()
        db.session.remove()
        copied = backup_service.import_tables(live_path, str(staged))
        db.engine.dispose()

        assert copied['brands'] == 1
        assert copied['products'] == 0
        assert set(copied) == set(TABLE_ORDER)
        assert [b.name for b in db.session.query(Brand).all()] == ['Old brand']
        assert db.session.query(Product).count() == 0


class TestExcelBundle:
    def test_zip_has_one_workbook_per_resource(self, client, seeded):
        resp = client.get('/api/backup/export-excel')
        assert resp.status_code == 200
        assert resp.mimetype == 'application/zip'
        with zipfile.ZipFile(io.BytesIO(resp.data)) as archive:
            names = set(archive.namelist())
        assert names == {
            'brands.xlsx', 'categories.xlsx', 'suppliers.xlsx',
            'products.xlsx', 'orders.xlsx', 'order_items.xlsx',
        }
