import asyncio
import copy
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from ctfboard.config import Config
from ctfboard.database.documents import (
    SERVER_TIMESTAMP, ChangeType, Document, DocumentChange, Increment, PendingWrite, Predicate,
    json_deserializer, json_serializer
)
from ctfboard.database.models import Base, StoredDocument
from ctfboard.utils.exceptions import (
    BatchLimitExceededError, CTFBoardException, DocumentNotFoundError, StoreError
)
from ctfboard.utils.logger import setup_logger

logger = setup_logger(__name__)

ChangeCallback = Callable[[DocumentChange], Awaitable[None]]


def _apply_fields(base: Dict[str, Any], fields: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Merge top-level fields into base, resolving write sentinels."""
    for key, value in fields.items():
        if value is SERVER_TIMESTAMP:
            base[key] = now
        elif isinstance(value, Increment):
            current = base.get(key)
            if not isinstance(current, (int, float)) or isinstance(current, bool):
                current = 0
            base[key] = current + value.delta
        else:
            base[key] = copy.deepcopy(value)
    return base


class WriteBatch:
    """
    Ordered set of writes committed atomically.

    Operations apply in the order they were added. The batch refuses to grow
    past the store's operation limit so no single commit exceeds it.
    """

    def __init__(self, store: 'Database', max_operations: int):
        self._store = store
        self._ops: List[PendingWrite] = []
        self.max_operations = max_operations
        self.committed = False

    def __len__(self):
        return len(self._ops)

    def add(self, op: PendingWrite) -> 'WriteBatch':
        if self.committed:
            raise RuntimeError("Batch already committed")
        if len(self._ops) >= self.max_operations:
            raise BatchLimitExceededError(self.max_operations)
        self._ops.append(op)
        return self

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> 'WriteBatch':
        return self.add(PendingWrite('set', collection, doc_id, data, merge))

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> 'WriteBatch':
        return self.add(PendingWrite('update', collection, doc_id, data))

    def delete(self, collection: str, doc_id: str) -> 'WriteBatch':
        return self.add(PendingWrite('delete', collection, doc_id))

    async def commit(self) -> int:
        """Commit every queued write in one transaction. Returns the operation count."""
        if self.committed:
            raise RuntimeError("Batch already committed")
        await self._store._commit_ops(self._ops)
        self.committed = True
        return len(self._ops)


class Subscription:
    """
    Live query over one collection.

    Matching changes are queued and drained by a single consumer task, so the
    callback never runs concurrently with itself.
    """

    def __init__(self, store: 'Database', collection: str, predicates: Sequence[Predicate], on_change: ChangeCallback):
        self._store = store
        self.collection = collection
        self.predicates = tuple(predicates)
        self._on_change = on_change
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._task = asyncio.create_task(self._consume())

    @property
    def closed(self) -> bool:
        return self._closed

    def matches(self, data: Optional[Dict[str, Any]]) -> bool:
        return data is not None and all(p.matches(data) for p in self.predicates)

    def deliver(self, change: DocumentChange) -> None:
        if not self._closed:
            self._queue.put_nowait(change)

    async def _consume(self):
        while True:
            change = await self._queue.get()
            try:
                if change is None:
                    return
                await self._on_change(change)
            except Exception as e:
                logger.error(f"Subscription callback failed for {self.collection}/{change.document.id}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def wait_idle(self) -> None:
        """Wait until every change delivered so far has been handled."""
        await self._queue.join()

    def close(self) -> None:
        """Detach from the store. Changes already queued are still handled."""
        if self._closed:
            return
        self._closed = True
        self._store._unsubscribe(self)
        self._queue.put_nowait(None)


class Database:
    """
    Document store backed by a single SQLAlchemy table.

    Documents are schemaless JSON blobs addressed by (collection, id). Every
    write runs in its own transaction; batches run all their writes in one.
    Queries filter and order in Python over the collection's rows, and a
    document missing the order_by field is left out of an ordered query.
    """

    def __init__(self, database_url: Optional[str] = None, batch_limit: Optional[int] = None):
        self.logger = logger
        self.database_url = database_url or Config.DATABASE_URL
        self.batch_limit = batch_limit or Config.BATCH_LIMIT
        self.engine = None
        self.async_session = None
        self._subscriptions: List[Subscription] = []
        # Serializes store access; SQLite sessions may share one connection
        self._lock = asyncio.Lock()

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing document store...")

        database_url = self.database_url
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        engine_kwargs = {
            'echo': Config.DEBUG,
            'json_serializer': json_serializer,
            'json_deserializer': json_deserializer,
        }
        if ':memory:' in database_url:
            # One shared connection, otherwise every session sees an empty database
            engine_kwargs['poolclass'] = StaticPool

        self.engine = create_async_engine(database_url, **engine_kwargs)

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Document store initialized successfully")

    @asynccontextmanager
    async def transaction(self):
        """
        Transaction boundary for atomic operations.

        All writes inside the context commit together on success, or roll
        back together on failure.
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close subscriptions and the database connection"""
        for subscription in list(self._subscriptions):
            subscription.close()
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Document store connection closed")

    # Reads

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Point read. Returns None when the document does not exist."""
        try:
            async with self._lock, self.async_session() as session:
                row = await self._load_row(session, collection, doc_id)
                if row is None:
                    return None
                return Document(row.doc_id, copy.deepcopy(row.data))
        except SQLAlchemyError as e:
            raise StoreError(f"get {collection}/{doc_id}", str(e)) from e

    async def query(
        self,
        collection: str,
        *predicates: Predicate,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Document]:
        """Documents in a collection matching every predicate."""
        try:
            async with self._lock, self.async_session() as session:
                result = await session.execute(
                    select(StoredDocument).where(StoredDocument.collection == collection)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise StoreError(f"query {collection}", str(e)) from e

        documents = [
            Document(row.doc_id, copy.deepcopy(row.data))
            for row in rows
            if all(p.matches(row.data) for p in predicates)
        ]

        # Stable base order so ties in order_by come back the same way every time
        documents.sort(key=lambda d: d.id)
        if order_by:
            documents = [d for d in documents if d.data.get(order_by) is not None]
            try:
                documents.sort(key=lambda d: d.data[order_by], reverse=descending)
            except TypeError as e:
                raise StoreError(f"query {collection}", f"cannot order by {order_by}: {e}") from e

        if limit is not None:
            documents = documents[:limit]
        return documents

    # Writes

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        await self._commit_ops([PendingWrite('set', collection, doc_id, data, merge)])

    async def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Merge fields into an existing document. Raises DocumentNotFoundError if absent."""
        await self._commit_ops([PendingWrite('update', collection, doc_id, data)])

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._commit_ops([PendingWrite('delete', collection, doc_id)])

    async def increment(self, collection: str, doc_id: str, field: str, delta: float) -> None:
        await self.update(collection, doc_id, {field: Increment(delta)})

    def batch(self) -> WriteBatch:
        return WriteBatch(self, self.batch_limit)

    # Live queries

    def subscribe(self, collection: str, predicates: Sequence[Predicate], on_change: ChangeCallback) -> Subscription:
        """
        Deliver added/modified/removed changes for documents matching predicates.

        Must be called from a running event loop. Only writes committed after
        subscribing are delivered.
        """
        subscription = Subscription(self, collection, predicates, on_change)
        self._subscriptions.append(subscription)
        self.logger.debug(f"Subscribed to {collection} ({len(self._subscriptions)} active)")
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    # Internals

    async def _load_row(self, session: AsyncSession, collection: str, doc_id: str) -> Optional[StoredDocument]:
        result = await session.execute(
            select(StoredDocument)
            .where(StoredDocument.collection == collection, StoredDocument.doc_id == doc_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def _commit_ops(self, ops: Sequence[PendingWrite]) -> None:
        if not ops:
            return
        if len(ops) > self.batch_limit:
            raise BatchLimitExceededError(self.batch_limit)

        now = datetime.now(timezone.utc)
        changes = []
        try:
            async with self._lock, self.transaction() as session:
                for op in ops:
                    row = await self._load_row(session, op.collection, op.doc_id)
                    before = copy.deepcopy(row.data) if row is not None else None

                    if op.kind == 'delete':
                        after = None
                        if row is not None:
                            await session.delete(row)
                    elif op.kind == 'update':
                        if row is None:
                            raise DocumentNotFoundError(op.collection, op.doc_id)
                        after = _apply_fields(copy.deepcopy(before), op.data, now)
                    else:
                        base = copy.deepcopy(before) if (op.merge and before is not None) else {}
                        after = _apply_fields(base, op.data, now)

                    if after is not None:
                        if row is None:
                            session.add(StoredDocument(collection=op.collection, doc_id=op.doc_id, data=after))
                        else:
                            row.data = after
                    await session.flush()
                    changes.append((op.collection, op.doc_id, before, after))
        except CTFBoardException:
            raise
        except SQLAlchemyError as e:
            raise StoreError(f"write to {ops[0].collection}", str(e)) from e

        self._dispatch(changes)

    def _dispatch(self, changes) -> None:
        for collection, doc_id, before, after in changes:
            for subscription in list(self._subscriptions):
                if subscription.collection != collection:
                    continue
                was_match = subscription.matches(before)
                is_match = subscription.matches(after)
                if is_match and not was_match:
                    change = DocumentChange(ChangeType.ADDED, Document(doc_id, copy.deepcopy(after)))
                elif is_match:
                    change = DocumentChange(ChangeType.MODIFIED, Document(doc_id, copy.deepcopy(after)))
                elif was_match:
                    change = DocumentChange(ChangeType.REMOVED, Document(doc_id, copy.deepcopy(before)))
                else:
                    continue
                subscription.deliver(change)
