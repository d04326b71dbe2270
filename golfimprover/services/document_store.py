"""Hierarchical document storage backends.

Paths follow the ``users/{uid}/practiceLogs/{id}`` layout: a collection path
has an odd number of segments and a document path an even number.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

import redis
from supabase import Client as SupabaseClient
from supabase import create_client
from upstash_redis import Redis as UpstashRedis

from ..config import Settings
from ..errors import StorageError

logger = logging.getLogger(__name__)

Filter = Tuple[str, str, Any]
Ordering = Tuple[str, bool]
Snapshot = List[Dict[str, Any]]
Listener = Callable[[Snapshot], None]

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda left, right: left == right,
    ">=": lambda left, right: left >= right,
    "<=": lambda left, right: left <= right,
    ">": lambda left, right: left > right,
    "<": lambda left, right: left < right,
}


def split_path(path: str) -> Tuple[str, str]:
    """Return ``(collection, document_id)`` for a document path."""

    segments = [segment for segment in path.strip("/").split("/") if segment]
    if len(segments) < 2 or len(segments) % 2:
        raise ValueError(f"Not a document path: {path!r}")
    return "/".join(segments[:-1]), segments[-1]


def _check_collection(path: str) -> str:
    segments = [segment for segment in path.strip("/").split("/") if segment]
    if not segments or len(segments) % 2 == 0:
        raise ValueError(f"Not a collection path: {path!r}")
    return "/".join(segments)


def matches(document: Dict[str, Any], where: Iterable[Filter]) -> bool:
    for field, op, value in where:
        if op not in _OPERATORS:
            raise ValueError(f"Unsupported operator: {op}")
        current = document.get(field)
        if current is None:
            return False
        try:
            if not _OPERATORS[op](current, value):
                return False
        except TypeError:
            return False
    return True


def sort_documents(documents: Snapshot, order_by: Sequence[Ordering]) -> Snapshot:
    """Sort like the hosted store: documents missing an ordering field are left out."""

    if not order_by:
        return list(documents)
    ordered = [doc for doc in documents if all(doc.get(field) is not None for field, _ in order_by)]
    for field, descending in reversed(order_by):
        ordered.sort(key=lambda doc: doc[field], reverse=descending)
    return ordered


class DocumentStore:
    """Interface shared by the storage backends."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Tuple[Listener, Tuple[Ordering, ...]]]] = {}
        self._listener_lock = threading.Lock()

    # --- Backend operations ---------------------------------------------

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def set(self, path: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    def update(self, path: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        raise NotImplementedError

    def delete(self, path: str) -> None:
        raise NotImplementedError

    def query(
        self,
        collection: str,
        where: Sequence[Filter] = (),
        order_by: Sequence[Ordering] = (),
        limit: Optional[int] = None,
    ) -> Snapshot:
        raise NotImplementedError

    def list_ids(self, collection: str) -> List[str]:
        raise NotImplementedError

    def create_if_absent(
        self, collection: str, key_field: str, key_value: Any, data: Dict[str, Any]
    ) -> Tuple[str, bool]:
        """Insert ``data`` unless a document with ``key_field == key_value`` exists.

        Returns the id of the stored document and whether it was created. The
        check and the insert happen as one operation.
        """
        raise NotImplementedError

    # --- Subscriptions ----------------------------------------------------

    def watch(
        self, collection: str, callback: Listener, order_by: Sequence[Ordering] = ()
    ) -> Callable[[], None]:
        """Push the ordered collection snapshot to ``callback`` after every write.

        Only writes made through this store instance are observed. The current
        snapshot is delivered immediately. Returns a callable that
        removes the subscription.
        """

        collection = _check_collection(collection)
        entry = (callback, tuple(order_by))
        with self._listener_lock:
            self._listeners.setdefault(collection, []).append(entry)
        callback(self.query(collection, order_by=order_by))

        def unsubscribe() -> None:
            with self._listener_lock:
                listeners = self._listeners.get(collection, [])
                if entry in listeners:
                    listeners.remove(entry)
                if not listeners:
                    self._listeners.pop(collection, None)

        return unsubscribe

    def _notify(self, collection: str) -> None:
        with self._listener_lock:
            listeners = list(self._listeners.get(collection, []))
        for callback, order_by in listeners:
            try:
                callback(self.query(collection, order_by=order_by))
            except Exception:
                logger.warning('Document listener failed for %s', collection, exc_info=True)


class LocalDocumentStore(DocumentStore):
    """JSON documents on the filesystem, or in Redis when a client is configured."""

    def __init__(self, data_dir: Path, redis_client: Optional[Any] = None) -> None:
        super().__init__()
        data_dir = Path(data_dir).expanduser()
        data_dir.mkdir(parents=True, exist_ok=True)
        self._data_dir = data_dir.resolve()
        self._redis = redis_client
        self._lock = threading.RLock()

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        collection, doc_id = split_path(path)
        data = self._load(collection).get(doc_id)
        if data is None:
            return None
        return {'id': doc_id, **data}

    def set(self, path: str, data: Dict[str, Any]) -> None:
        collection, doc_id = split_path(path)
        with self._lock:
            documents = self._load(collection, for_write=True)
            documents[doc_id] = dict(data)
            self._save(collection, documents)
        self._notify(collection)

    def update(self, path: str, data: Dict[str, Any]) -> None:
        collection, doc_id = split_path(path)
        with self._lock:
            documents = self._load(collection, for_write=True)
            if doc_id not in documents:
                raise StorageError(f'No document to update at {path}')
            documents[doc_id] = {**documents[doc_id], **data}
            self._save(collection, documents)
        self._notify(collection)

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        collection = _check_collection(collection)
        doc_id = uuid4().hex
        with self._lock:
            documents = self._load(collection, for_write=True)
            documents[doc_id] = dict(data)
            self._save(collection, documents)
        self._notify(collection)
        return doc_id

    def delete(self, path: str) -> None:
        collection, doc_id = split_path(path)
        with self._lock:
            documents = self._load(collection, for_write=True)
            if documents.pop(doc_id, None) is None:
                return
            self._save(collection, documents)
        self._notify(collection)

    def query(
        self,
        collection: str,
        where: Sequence[Filter] = (),
        order_by: Sequence[Ordering] = (),
        limit: Optional[int] = None,
    ) -> Snapshot:
        collection = _check_collection(collection)
        documents = [
            {'id': doc_id, **data}
            for doc_id, data in self._load(collection).items()
            if matches(data, where)
        ]
        ordered = sort_documents(documents, order_by)
        if limit is not None and limit > 0:
            return ordered[:limit]
        return ordered

    def list_ids(self, collection: str) -> List[str]:
        return list(self._load(_check_collection(collection)).keys())

    def create_if_absent(
        self, collection: str, key_field: str, key_value: Any, data: Dict[str, Any]
    ) -> Tuple[str, bool]:
        collection = _check_collection(collection)
        with self._lock:
            documents = self._load(collection, for_write=True)
            for doc_id, existing in documents.items():
                if existing.get(key_field) == key_value:
                    return doc_id, False
            doc_id = uuid4().hex
            documents[doc_id] = {**data, key_field: key_value}
            self._save(collection, documents)
        self._notify(collection)
        return doc_id, True

    # --- Private helpers -------------------------------------------------

    def _collection_path(self, collection: str) -> Path:
        return self._data_dir / (collection.replace('/', '__') + '.json')

    def _redis_key(self, collection: str) -> str:
        return f'golfimprover:{collection}'

    def _load(self, collection: str, for_write: bool = False) -> Dict[str, Dict[str, Any]]:
        """Read a collection blob.

        Reads may fall back to the filesystem copy when Redis fails. Writes
        rewrite the whole blob, so with ``for_write`` any unreadable source
        raises :class:`StorageError` instead of yielding a partial snapshot.
        """

        if self._redis is not None:
            try:
                raw = self._redis.get(self._redis_key(collection))
            except Exception as exc:
                if for_write:
                    raise StorageError(f'Redis read failed for {collection}') from exc
                logger.warning('Redis read failed; using filesystem fallback', exc_info=True)
            else:
                if raw is not None:
                    return self._decode(collection, raw, for_write)

        path = self._collection_path(collection)
        if not path.exists():
            return {}
        return self._decode(collection, path.read_text(), for_write)

    def _decode(self, collection: str, raw: Any, for_write: bool) -> Dict[str, Dict[str, Any]]:
        if isinstance(raw, bytes):
            raw = raw.decode('utf-8')
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            if for_write:
                raise StorageError(f'Stored collection {collection} is not valid JSON') from exc
            logger.warning('Ignoring unreadable collection %s', collection)
            return {}
        if not isinstance(data, dict):
            if for_write:
                raise StorageError(f'Stored collection {collection} is not a mapping')
            return {}
        return data

    def _save(self, collection: str, documents: Dict[str, Dict[str, Any]]) -> None:
        if self._redis is not None:
            try:
                self._redis.set(self._redis_key(collection), json.dumps(documents))
            except Exception as exc:
                logger.error('Redis write failed for %s', collection, exc_info=True)
                raise StorageError(f'Redis write failed for {collection}') from exc
            return

        path = self._collection_path(collection)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix('.json.tmp')
        tmp_path.write_text(json.dumps(documents, indent=2))
        tmp_path.replace(path)


class SupabaseDocumentStore(DocumentStore):
    """Documents kept in a single Supabase ``documents`` table.

    Expected schema::

        create table documents (
            collection text not null,
            id text not null,
            data jsonb not null,
            unique_key text,
            created_at timestamptz not null default now(),
            primary key (collection, id),
            unique (collection, unique_key)
        );
    """

    TABLE = 'documents'

    def __init__(self, client: SupabaseClient) -> None:
        super().__init__()
        self._client = client

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        collection, doc_id = split_path(path)
        response = (
            self._table()
            .select('id, data')
            .eq('collection', collection)
            .eq('id', doc_id)
            .limit(1)
            .execute()
        )
        if response.data:
            return self._to_document(response.data[0])
        return None

    def set(self, path: str, data: Dict[str, Any]) -> None:
        collection, doc_id = split_path(path)
        self._table().upsert(
            {'collection': collection, 'id': doc_id, 'data': data},
            on_conflict='collection,id',
        ).execute()
        self._notify(collection)

    def update(self, path: str, data: Dict[str, Any]) -> None:
        existing = self.get(path)
        if existing is None:
            raise StorageError(f'No document to update at {path}')
        existing.pop('id', None)
        collection, doc_id = split_path(path)
        self._table().update({'data': {**existing, **data}}).eq('collection', collection).eq(
            'id', doc_id
        ).execute()
        self._notify(collection)

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        collection = _check_collection(collection)
        doc_id = uuid4().hex
        self._table().insert({'collection': collection, 'id': doc_id, 'data': data}).execute()
        self._notify(collection)
        return doc_id

    def delete(self, path: str) -> None:
        collection, doc_id = split_path(path)
        self._table().delete().eq('collection', collection).eq('id', doc_id).execute()
        self._notify(collection)

    def query(
        self,
        collection: str,
        where: Sequence[Filter] = (),
        order_by: Sequence[Ordering] = (),
        limit: Optional[int] = None,
    ) -> Snapshot:
        collection = _check_collection(collection)
        query = self._table().select('id, data').eq('collection', collection)
        for field, op, value in where:
            column = f'data->>{field}'
            text = self._as_text(value)
            if op == '==':
                query = query.eq(column, text)
            elif op == '>=':
                query = query.gte(column, text)
            elif op == '<=':
                query = query.lte(column, text)
            elif op == '>':
                query = query.gt(column, text)
            elif op == '<':
                query = query.lt(column, text)
            else:
                raise ValueError(f'Unsupported operator: {op}')
        for field, descending in order_by:
            query = query.order(f'data->>{field}', desc=descending)
        if limit is not None and limit > 0:
            query = query.limit(limit)
        response = query.execute()
        documents = [self._to_document(row) for row in response.data or [] if isinstance(row, dict)]
        return sort_documents(documents, order_by)

    def list_ids(self, collection: str) -> List[str]:
        collection = _check_collection(collection)
        response = self._table().select('id').eq('collection', collection).execute()
        return [row['id'] for row in response.data or [] if isinstance(row, dict) and row.get('id')]

    def create_if_absent(
        self, collection: str, key_field: str, key_value: Any, data: Dict[str, Any]
    ) -> Tuple[str, bool]:
        collection = _check_collection(collection)
        doc_id = uuid4().hex
        unique_key = f'{key_field}={key_value}'
        response = self._table().upsert(
            {
                'collection': collection,
                'id': doc_id,
                'data': {**data, key_field: key_value},
                'unique_key': unique_key,
            },
            on_conflict='collection,unique_key',
            ignore_duplicates=True,
        ).execute()
        if response.data:
            self._notify(collection)
            return doc_id, True

        existing = (
            self._table()
            .select('id')
            .eq('collection', collection)
            .eq('unique_key', unique_key)
            .limit(1)
            .execute()
        )
        if not existing.data:
            raise StorageError(f'Conditional insert into {collection} returned no document')
        return existing.data[0]['id'], False

    def _table(self):
        return self._client.table(self.TABLE)

    @staticmethod
    def _to_document(row: Dict[str, Any]) -> Dict[str, Any]:
        data = row.get('data') or {}
        return {'id': row.get('id'), **data}

    @staticmethod
    def _as_text(value: Any) -> str:
        if isinstance(value, bool):
            return 'true' if value else 'false'
        return str(value)


def init_supabase(settings: Settings) -> Optional[SupabaseClient]:
    if not settings.supabase.is_valid:
        logger.info("Supabase disabled (missing env)")
        return None
    try:
        return create_client(settings.supabase.url, settings.supabase.key)
    except Exception as exc:
        logger.warning("Supabase init failed: %s", exc)
        return None


def _init_redis(settings: Settings) -> Optional[Any]:
    """Initialise a Redis client when Upstash credentials are available."""

    if settings.redis_url:
        try:
            return redis.from_url(settings.redis_url, decode_responses=True)
        except Exception:  # pragma: no cover - network dependent
            logger.warning('Redis init failed', exc_info=True)

    if settings.redis_rest_url and settings.redis_rest_token:
        try:
            return UpstashRedis(url=settings.redis_rest_url, token=settings.redis_rest_token)
        except Exception:  # pragma: no cover - network dependent
            logger.warning('Upstash REST client init failed', exc_info=True)
    return None


def build_document_store(
    settings: Settings, client: Optional[SupabaseClient] = None
) -> DocumentStore:
    """Return the Supabase store when a client is available, otherwise the local store.

    A Supabase client that could not be created (``None``) is replaced by the
    local store so the application can still start.
    """

    if client is not None:
        return SupabaseDocumentStore(client)
    return LocalDocumentStore(settings.data_dir, redis_client=_init_redis(settings))
