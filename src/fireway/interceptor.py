"""Write interception for migration code.

Migration scripts call the Firestore client directly. To count and log
their writes, and to turn them into no-ops during a dry run, the engine
hands them an ``InterceptedClient`` instead of the raw ``AsyncClient``.
The wrapper mirrors the client surface: every collection, document, query,
snapshot, batch, transaction and bulk writer obtained through it is
wrapped too, so ``snapshot.reference.update(...)`` inside
``async for snapshot in query.stream()`` is still observed.

Ownership is resolved per call. Each ``InterceptedClient`` has a key; the
``RunRegistry`` owned by the pipeline maps that key to the ``RunState`` of
the run that built it. A call whose key is not registered (before the run
starts, after it ends) passes straight through.

Architecture:
    ::

        migration code
            │  ctx.firestore.collection("users").document("u1").set({...})
            ▼
        InterceptedDocument.set
            │
            ├─ registry.resolve(client.key) ── None ──► raw.set(...)
            │
            ▼ RunState
        state.record(SET, "Setting", path, doc)    (skipped while frozen)
            │
            ├─ dry_run ──► WriteResult()            (never reaches network)
            └─ live    ──► await raw.set(...)

        Batches and transactions defer the record step until commit:
        batch.set(ref, doc) ─► pending.append(op) ─► raw.set(ref.raw, doc)
        await batch.commit() ─► record pending ops ─► [] | await raw.commit()
        transaction._commit() ─► record pending ops ─► rollback | raw._commit()

        Bulk writers record on enqueue and skip the raw call in a dry run.
        recursive_delete() always runs through an intercepted bulk writer.

Collection ``add`` counts once as ``added``. It delegates to the raw
collection, so the create that the client library performs internally never
reaches a wrapper and is not counted a second time.
"""

from __future__ import annotations

import json
import uuid
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from google.cloud.firestore_v1.types import write as write_types
from google.protobuf import timestamp_pb2

from fireway.errors import InterceptionError
from fireway.logging import get_logger
from fireway.stats import RunStats, WriteKind

logger = get_logger(__name__)


def render_document(document: Any) -> str:
    """JSON rendering of a document for log lines; sentinels fall back to ``str``."""
    return json.dumps(document, default=str)


@dataclass
class RunState:
    """What the interceptor needs to know about the run owning a client."""

    stats: RunStats
    dry_run: bool = False
    verbose: bool = False

    def record(self, kind: WriteKind, action: str, path: str | None, document: Any = None) -> None:
        """Count and log a write unless stats are frozen."""
        if self.stats.frozen:
            return
        self.count(kind, action, path, document)

    def count(self, kind: WriteKind, action: str, path: str | None, document: Any = None) -> None:
        self.stats.increment(kind)
        if self.verbose:
            fields: dict[str, Any] = {"action": action, "kind": kind.value}
            if path:
                fields["path"] = path
            if document is not None:
                fields["document"] = render_document(document)
            logger.info("write.intercepted", **fields)


class RunRegistry:
    """Maps client keys to the run state that owns them.

    One registry is created per ``migrate()`` invocation and discarded at the
    end of it.
    """

    def __init__(self) -> None:
        self._runs: dict[str, RunState] = {}

    def register(self, key: str, state: RunState) -> None:
        if key in self._runs:
            raise InterceptionError(f"Client {key} is already claimed by a run")
        self._runs[key] = state

    def resolve(self, key: str) -> RunState | None:
        return self._runs.get(key)

    def release(self, key: str) -> None:
        self._runs.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._runs

    def __len__(self) -> int:
        return len(self._runs)


# ── Proxies ──────────────────────────────────────────────────────────────


class _Proxy:
    """Delegates everything it does not override to the wrapped object."""

    def __init__(self, raw: Any, client: InterceptedClient) -> None:
        self._raw = raw
        self._client = client

    @property
    def raw(self) -> Any:
        return self._raw

    def __getattr__(self, name: str) -> Any:
        if name in ("_raw", "_client"):
            raise AttributeError(name)
        return getattr(self._raw, name)

    def __eq__(self, other: object) -> bool:
        return self._raw == unwrap(other)

    def __hash__(self) -> int:
        return hash(self._raw)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._raw!r})"


def unwrap(value: Any) -> Any:
    """Return the raw client object behind a proxy."""
    return value.raw if isinstance(value, _Proxy) else value


def _unwrapped(kwargs: dict[str, Any]) -> dict[str, Any]:
    return {name: unwrap(value) for name, value in kwargs.items()}


async def _snapshots(source: Any, client: InterceptedClient) -> AsyncIterator[InterceptedSnapshot]:
    async for snapshot in source:
        yield InterceptedSnapshot(snapshot, client)


def _chained(name: str) -> Callable[..., InterceptedQuery]:
    def method(self: InterceptedQuery, *args: Any, **kwargs: Any) -> InterceptedQuery:
        args = tuple(unwrap(arg) for arg in args)
        return InterceptedQuery(getattr(self._raw, name)(*args, **kwargs), self._client)

    method.__name__ = name
    return method


class InterceptedSnapshot(_Proxy):
    @property
    def reference(self) -> InterceptedDocument:
        return InterceptedDocument(self._raw.reference, self._client)


class InterceptedQuery(_Proxy):
    where = _chained("where")
    order_by = _chained("order_by")
    limit = _chained("limit")
    limit_to_last = _chained("limit_to_last")
    offset = _chained("offset")
    select = _chained("select")
    start_at = _chained("start_at")
    start_after = _chained("start_after")
    end_at = _chained("end_at")
    end_before = _chained("end_before")

    async def get(self, **kwargs: Any) -> list[InterceptedSnapshot]:
        snapshots = await self._raw.get(**_unwrapped(kwargs))
        return [InterceptedSnapshot(snapshot, self._client) for snapshot in snapshots]

    async def stream(self, **kwargs: Any) -> AsyncIterator[InterceptedSnapshot]:
        async for snapshot in self._raw.stream(**_unwrapped(kwargs)):
            yield InterceptedSnapshot(snapshot, self._client)


class InterceptedCollection(InterceptedQuery):
    def document(self, document_id: str | None = None) -> InterceptedDocument:
        return InterceptedDocument(self._raw.document(document_id), self._client)

    async def list_documents(self, **kwargs: Any) -> AsyncIterator[InterceptedDocument]:
        async for reference in self._raw.list_documents(**kwargs):
            yield InterceptedDocument(reference, self._client)

    async def add(
        self, document_data: dict[str, Any], document_id: str | None = None, **kwargs: Any
    ) -> tuple[Any, InterceptedDocument]:
        async def effect() -> tuple[Any, InterceptedDocument]:
            update_time, reference = await self._raw.add(
                document_data, document_id=document_id, **kwargs
            )
            return update_time, InterceptedDocument(reference, self._client)

        return await self._client.perform(
            WriteKind.ADDED,
            "Adding",
            self._raw.id,
            document_data,
            effect=effect,
            empty=lambda: (None, self.document(document_id)),
        )


class InterceptedDocument(_Proxy):
    def collection(self, collection_id: str) -> InterceptedCollection:
        return InterceptedCollection(self._raw.collection(collection_id), self._client)

    async def collections(self, **kwargs: Any) -> AsyncIterator[InterceptedCollection]:
        async for collection in self._raw.collections(**kwargs):
            yield InterceptedCollection(collection, self._client)

    async def get(self, **kwargs: Any) -> InterceptedSnapshot:
        return InterceptedSnapshot(await self._raw.get(**_unwrapped(kwargs)), self._client)

    async def create(self, document_data: dict[str, Any], **kwargs: Any) -> Any:
        return await self._client.perform(
            WriteKind.CREATED,
            "Creating",
            self._raw.path,
            document_data,
            effect=lambda: self._raw.create(document_data, **kwargs),
            empty=write_types.WriteResult,
        )

    async def set(self, document_data: dict[str, Any], merge: Any = False, **kwargs: Any) -> Any:
        return await self._client.perform(
            WriteKind.SET,
            "Merging" if merge else "Setting",
            self._raw.path,
            document_data,
            effect=lambda: self._raw.set(document_data, merge=merge, **kwargs),
            empty=write_types.WriteResult,
        )

    async def update(self, field_updates: dict[str, Any], option: Any = None, **kwargs: Any) -> Any:
        return await self._client.perform(
            WriteKind.UPDATED,
            "Updating",
            self._raw.path,
            field_updates,
            effect=lambda: self._raw.update(field_updates, option=option, **kwargs),
            empty=write_types.WriteResult,
        )

    async def delete(self, option: Any = None, **kwargs: Any) -> Any:
        return await self._client.perform(
            WriteKind.DELETED,
            "Deleting",
            self._raw.path,
            effect=lambda: self._raw.delete(option=option, **kwargs),
            empty=timestamp_pb2.Timestamp,
        )


class _BufferedWrites(_Proxy):
    """Write buffer whose operations count when the buffer is committed."""

    def __init__(self, raw: Any, client: InterceptedClient) -> None:
        super().__init__(raw, client)
        self._pending: deque[tuple[WriteKind, str, str, Any]] = deque()

    def _defer(self, kind: WriteKind, action: str, reference: Any, document: Any = None) -> None:
        self._pending.append((kind, action, unwrap(reference).path, document))

    def _flush(self) -> RunState | None:
        # Frozen stats are checked at commit, not when a write is queued.
        state = self._client.owner()
        while self._pending:
            operation = self._pending.popleft()
            if state is not None:
                state.record(*operation)
        return state

    def create(self, reference: Any, document_data: dict[str, Any]) -> Any:
        self._defer(WriteKind.CREATED, "Creating", reference, document_data)
        return self._raw.create(unwrap(reference), document_data)

    def set(self, reference: Any, document_data: dict[str, Any], merge: Any = False) -> Any:
        self._defer(WriteKind.SET, "Merging" if merge else "Setting", reference, document_data)
        return self._raw.set(unwrap(reference), document_data, merge=merge)

    def update(self, reference: Any, field_updates: dict[str, Any], option: Any = None) -> Any:
        self._defer(WriteKind.UPDATED, "Updating", reference, field_updates)
        return self._raw.update(unwrap(reference), field_updates, option=option)

    def delete(self, reference: Any, option: Any = None) -> Any:
        self._defer(WriteKind.DELETED, "Deleting", reference)
        return self._raw.delete(unwrap(reference), option=option)


class InterceptedBatch(_BufferedWrites):
    """Write batch; usable as ``async with client.batch() as batch:``."""

    async def commit(self, **kwargs: Any) -> Any:
        state = self._flush()
        if state is not None and state.dry_run:
            return []
        return await self._raw.commit(**kwargs)

    async def __aenter__(self) -> InterceptedBatch:
        return self

    async def __aexit__(self, exc_type: Any, exc_value: Any, traceback: Any) -> None:
        if exc_type is None:
            await self.commit()


class InterceptedTransaction(_BufferedWrites):
    """Transaction wrapper accepted by ``async_transactional`` functions.

    The decorator drives ``_clean_up``, ``_begin``, ``_commit`` and
    ``_rollback``; only the clean-up and commit steps need interception.
    A dry run still begins the transaction so reads see a consistent
    snapshot, then rolls it back instead of committing.
    """

    def _clean_up(self) -> None:
        self._pending.clear()
        self._raw._clean_up()

    async def _rollback(self) -> None:
        self._pending.clear()
        await self._raw._rollback()

    async def _commit(self) -> list:
        state = self._client.owner()
        if state is not None and state.dry_run:
            self._flush()
            if self._raw.in_progress:
                await self._raw._rollback()
            return []
        # Recorded only once committed; an aborted attempt is retried from scratch.
        results = await self._raw._commit()
        self._flush()
        return results

    async def get(self, ref_or_query: Any, **kwargs: Any) -> AsyncIterator[InterceptedSnapshot]:
        result = await self._raw.get(unwrap(ref_or_query), **kwargs)
        return _snapshots(result, self._client)

    async def get_all(self, references: Any, **kwargs: Any) -> AsyncIterator[InterceptedSnapshot]:
        result = await self._raw.get_all([unwrap(ref) for ref in references], **kwargs)
        return _snapshots(result, self._client)


class InterceptedBulkWriter(_Proxy):
    """Bulk writer whose operations count as they are enqueued.

    The raw writer sends on its own schedule, so there is no commit step to
    defer to. In a dry run nothing is enqueued at all.
    """

    def _enqueue(
        self, kind: WriteKind, action: str, reference: Any, document: Any, send: Callable[[], Any]
    ) -> Any:
        state = self._client.owner()
        if state is None:
            return send()
        state.record(kind, action, unwrap(reference).path, document)
        if state.dry_run:
            return None
        return send()

    def create(self, reference: Any, document_data: dict[str, Any], **kwargs: Any) -> Any:
        return self._enqueue(
            WriteKind.CREATED,
            "Creating",
            reference,
            document_data,
            lambda: self._raw.create(unwrap(reference), document_data, **kwargs),
        )

    def set(self, reference: Any, document_data: dict[str, Any], merge: Any = False, **kwargs: Any) -> Any:
        return self._enqueue(
            WriteKind.SET,
            "Merging" if merge else "Setting",
            reference,
            document_data,
            lambda: self._raw.set(unwrap(reference), document_data, merge=merge, **kwargs),
        )

    def update(self, reference: Any, field_updates: dict[str, Any], option: Any = None, **kwargs: Any) -> Any:
        return self._enqueue(
            WriteKind.UPDATED,
            "Updating",
            reference,
            field_updates,
            lambda: self._raw.update(unwrap(reference), field_updates, option=option, **kwargs),
        )

    def delete(self, reference: Any, option: Any = None, **kwargs: Any) -> Any:
        return self._enqueue(
            WriteKind.DELETED,
            "Deleting",
            reference,
            None,
            lambda: self._raw.delete(unwrap(reference), option=option, **kwargs),
        )


class InterceptedClient(_Proxy):
    """Firestore client wrapper handed to migration code.

    Parameters
    ----------
    client
        The raw ``google.cloud.firestore.AsyncClient``.
    registry
        Registry the owning run registers this client's ``key`` in.
    """

    def __init__(self, client: Any, registry: RunRegistry, key: str | None = None) -> None:
        super().__init__(client, self)
        self._registry = registry
        self.key = key or uuid.uuid4().hex

    def owner(self) -> RunState | None:
        return self._registry.resolve(self.key)

    async def perform(
        self,
        kind: WriteKind,
        action: str,
        path: str | None,
        document: Any = None,
        *,
        effect: Callable[[], Awaitable[Any]],
        empty: Callable[[], Any],
    ) -> Any:
        """Run one single-document write on behalf of the owning run."""
        state = self.owner()
        if state is None:
            return await effect()
        state.record(kind, action, path, document)
        if state.dry_run:
            return empty()
        return await effect()

    def collection(self, *collection_path: str) -> InterceptedCollection:
        return InterceptedCollection(self._raw.collection(*collection_path), self)

    def document(self, *document_path: str) -> InterceptedDocument:
        return InterceptedDocument(self._raw.document(*document_path), self)

    def collection_group(self, collection_id: str) -> InterceptedQuery:
        return InterceptedQuery(self._raw.collection_group(collection_id), self)

    def batch(self) -> InterceptedBatch:
        return InterceptedBatch(self._raw.batch(), self)

    def transaction(self, **kwargs: Any) -> InterceptedTransaction:
        return InterceptedTransaction(self._raw.transaction(**kwargs), self)

    def bulk_writer(self, options: Any = None) -> InterceptedBulkWriter:
        return InterceptedBulkWriter(self._raw.bulk_writer(options=options), self)

    async def recursive_delete(
        self, reference: Any, *, bulk_writer: Any = None, chunk_size: int = 5000
    ) -> int:
        """Delete *reference* and everything below it through an intercepted bulk writer.

        Every document found is counted as deleted. In a dry run the
        documents are still listed but none is deleted.
        """
        if not isinstance(bulk_writer, InterceptedBulkWriter):
            bulk_writer = InterceptedBulkWriter(bulk_writer or self._raw.bulk_writer(), self)
        return await self._raw.recursive_delete(
            unwrap(reference), bulk_writer=bulk_writer, chunk_size=chunk_size
        )

    async def get_all(self, references: Any, **kwargs: Any) -> AsyncIterator[InterceptedSnapshot]:
        async for snapshot in self._raw.get_all(
            [unwrap(ref) for ref in references], **_unwrapped(kwargs)
        ):
            yield InterceptedSnapshot(snapshot, self)

    async def collections(self, **kwargs: Any) -> AsyncIterator[InterceptedCollection]:
        async for collection in self._raw.collections(**kwargs):
            yield InterceptedCollection(collection, self)


__all__ = [
    "InterceptedBatch",
    "InterceptedBulkWriter",
    "InterceptedClient",
    "InterceptedCollection",
    "InterceptedDocument",
    "InterceptedQuery",
    "InterceptedSnapshot",
    "InterceptedTransaction",
    "RunRegistry",
    "RunState",
    "render_document",
    "unwrap",
]
