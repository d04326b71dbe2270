from __future__ import annotations

from pathlib import Path
from tempfile import TemporaryDirectory
from types import SimpleNamespace
from unittest import TestCase
from unittest.mock import MagicMock, patch

from golfimprover.config import Settings
from golfimprover.errors import StorageError
from golfimprover.services.document_store import (
    LocalDocumentStore,
    SupabaseDocumentStore,
    build_document_store,
    split_path,
)


class LocalDocumentStoreTests(TestCase):
    def setUp(self) -> None:
        self.tmpdir = TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.store = LocalDocumentStore(Path(self.tmpdir.name))

    def test_set_get_and_update(self) -> None:
        self.store.set('users/u1', {'email': 'a@example.com', 'handicap': 12.0})
        self.store.update('users/u1', {'handicap': 11.5})

        self.assertEqual(
            {'id': 'u1', 'email': 'a@example.com', 'handicap': 11.5}, self.store.get('users/u1')
        )
        self.assertIsNone(self.store.get('users/missing'))

    def test_update_missing_document_raises(self) -> None:
        with self.assertRaises(StorageError):
            self.store.update('users/nobody', {'name': 'x'})

    def test_query_filters_orders_and_limits(self) -> None:
        collection = 'users/u1/practiceLogs'
        for day in ('2024-05-03', '2024-05-01', '2024-04-28', '2024-05-02'):
            self.store.add(collection, {'date': day})
        self.store.add(collection, {'notes': 'no date'})

        results = self.store.query(
            collection,
            where=[('date', '>=', '2024-05-01')],
            order_by=[('date', True)],
            limit=2,
        )

        self.assertEqual(['2024-05-03', '2024-05-02'], [doc['date'] for doc in results])

    def test_ordering_leaves_out_documents_missing_the_field(self) -> None:
        collection = 'users/u1/goals'
        self.store.add(collection, {'title': 'a', 'createdAt': '2024-01-01'})
        self.store.add(collection, {'title': 'b'})

        self.assertEqual(['a'], [doc['title'] for doc in self.store.query(collection, order_by=[('createdAt', False)])])
        self.assertEqual(2, len(self.store.query(collection)))

    def test_create_if_absent_keeps_a_single_document(self) -> None:
        collection = 'users/u1/monthlyRecaps'

        first_id, first_created = self.store.create_if_absent(collection, 'month', '2024-05', {'notes': 'one'})
        second_id, second_created = self.store.create_if_absent(collection, 'month', '2024-05', {'notes': 'two'})

        self.assertTrue(first_created)
        self.assertFalse(second_created)
        self.assertEqual(first_id, second_id)
        docs = self.store.query(collection)
        self.assertEqual(1, len(docs))
        self.assertEqual('one', docs[0]['notes'])

    def test_watch_pushes_snapshots_until_unsubscribed(self) -> None:
        collection = 'users/u1/notifications'
        snapshots = []

        unsubscribe = self.store.watch(collection, snapshots.append, order_by=[('timestamp', True)])
        self.store.add(collection, {'timestamp': '2024-05-01', 'read': False})
        self.store.add(collection, {'timestamp': '2024-05-02', 'read': False})
        unsubscribe()
        self.store.add(collection, {'timestamp': '2024-05-03', 'read': False})

        self.assertEqual([0, 1, 2], [len(snapshot) for snapshot in snapshots])
        self.assertEqual('2024-05-02', snapshots[-1][0]['timestamp'])

    def test_paths_are_validated(self) -> None:
        with self.assertRaises(ValueError):
            split_path('users')
        with self.assertRaises(ValueError):
            self.store.add('users/u1', {'x': 1})

    def test_redis_client_is_preferred_over_files(self) -> None:
        redis_store = {}

        class _FakeRedis:
            def set(self, key, value):
                redis_store[key] = value

            def get(self, key):
                return redis_store.get(key)

        store = LocalDocumentStore(Path(self.tmpdir.name), redis_client=_FakeRedis())
        store.set('users/u2', {'email': 'b@example.com'})

        self.assertIn('golfimprover:users', redis_store)
        self.assertFalse((Path(self.tmpdir.name) / 'users.json').exists())
        self.assertEqual('b@example.com', store.get('users/u2')['email'])

    def test_redis_read_failure_does_not_overwrite_collection(self) -> None:
        redis_store = {}
        failing = {'get': False}

        class _FlakyRedis:
            def set(self, key, value):
                redis_store[key] = value

            def get(self, key):
                if failing['get']:
                    raise ConnectionError('redis unavailable')
                return redis_store.get(key)

        store = LocalDocumentStore(Path(self.tmpdir.name), redis_client=_FlakyRedis())
        for minutes in (30, 45, 60):
            store.add('users/u1/practiceLogs', {'duration': minutes})

        failing['get'] = True
        with self.assertRaises(StorageError):
            store.add('users/u1/practiceLogs', {'duration': 90})
        with self.assertRaises(StorageError):
            store.create_if_absent('users/u1/monthlyRecaps', 'month', '2024-05', {})
        self.assertEqual([], store.query('users/u1/practiceLogs'))

        failing['get'] = False
        store.add('users/u1/practiceLogs', {'duration': 90})
        self.assertEqual(4, len(store.query('users/u1/practiceLogs')))

    def test_redis_write_failure_raises(self) -> None:
        class _ReadOnlyRedis:
            def set(self, key, value):
                raise ConnectionError('redis unavailable')

            def get(self, key):
                return None

        store = LocalDocumentStore(Path(self.tmpdir.name), redis_client=_ReadOnlyRedis())

        with self.assertRaises(StorageError):
            store.set('users/u1', {'email': 'a@example.com'})
        self.assertFalse((Path(self.tmpdir.name) / 'users.json').exists())

    def test_corrupt_collection_file_is_not_overwritten(self) -> None:
        path = Path(self.tmpdir.name) / 'users.json'
        path.write_text('{"u1": {"email": "a@exa')

        self.assertIsNone(self.store.get('users/u1'))
        with self.assertRaises(StorageError):
            self.store.set('users/u2', {'email': 'b@example.com'})
        self.assertEqual('{"u1": {"email": "a@exa', path.read_text())


class BuildDocumentStoreTests(TestCase):
    def test_local_store_without_supabase_client(self) -> None:
        with TemporaryDirectory() as tmpdir:
            store = build_document_store(Settings(data_dir=Path(tmpdir)), client=None)

        self.assertIsInstance(store, LocalDocumentStore)

    def test_redis_url_configures_local_store(self) -> None:
        fake_client = MagicMock()
        fake_client.get.return_value = None
        fake_module = SimpleNamespace(from_url=lambda *args, **kwargs: fake_client)

        with TemporaryDirectory() as tmpdir:
            settings = Settings(data_dir=Path(tmpdir), redis_url='redis://localhost:6379')
            with patch('golfimprover.services.document_store.redis', fake_module):
                store = build_document_store(settings)
            store.set('users/u3', {'email': 'c@example.com'})

        fake_client.set.assert_called_once()
        self.assertEqual('golfimprover:users', fake_client.set.call_args[0][0])

    def test_supabase_store_with_client(self) -> None:
        store = build_document_store(Settings(), client=MagicMock())

        self.assertIsInstance(store, SupabaseDocumentStore)
