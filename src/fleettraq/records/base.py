"""Record store seam.

The coordinators only ever talk to a :class:`RecordStore`: create, update
and delete single documents, and subscribe to a filtered/ordered query that
re-delivers the full result set on every change. Documents cross this seam
as plain :class:`Document` values and are turned into typed records with
:func:`parse_documents`, which is the single place malformed documents are
rejected.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

from pydantic import ValidationError

from fleettraq.models._base import FleetRecord

_logger = logging.getLogger(__name__)

TRecord = TypeVar("TRecord", bound=FleetRecord)


@dataclass(frozen=True)
class FieldFilter:
    """Field equality filter (``where(field, "==", value)``)."""

    field: str
    value: Any


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class Document:
    """A stored document: generated id plus its fields."""

    id: str
    fields: Mapping[str, Any] = field(default_factory=dict)


SnapshotCallback = Callable[[list[Document]], None]
ErrorCallback = Callable[[Exception], None]


class Subscription:
    """Handle for a live query. ``close()`` is idempotent."""

    def __init__(self, on_close: Callable[[], None]) -> None:
        self._on_close: Callable[[], None] | None = on_close

    @property
    def closed(self) -> bool:
        return self._on_close is None

    def close(self) -> None:
        on_close = self._on_close
        self._on_close = None
        if on_close is not None:
            on_close()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


class RecordStore(Protocol):
    """Real-time document collection store."""

    async def create(self, collection: str, fields: Mapping[str, Any]) -> str: ...

    async def update(self, collection: str, record_id: str, fields: Mapping[str, Any]) -> None: ...

    async def delete(self, collection: str, record_id: str) -> None: ...

    def subscribe(
        self,
        collection: str,
        *,
        filters: Sequence[FieldFilter] = (),
        order_by: OrderBy | None = None,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription: ...


def matches(fields: Mapping[str, Any], filters: Iterable[FieldFilter]) -> bool:
    return all(f.field in fields and fields[f.field] == f.value for f in filters)


def apply_query(
    documents: Iterable[Document],
    *,
    filters: Sequence[FieldFilter] = (),
    order_by: OrderBy | None = None,
) -> list[Document]:
    """Filter and order *documents* the way the backing store would.

    Documents missing the ``order_by`` field are excluded, as Firestore does.
    """
    selected = [doc for doc in documents if matches(doc.fields, filters)]
    if order_by is None:
        return selected
    ordered = [doc for doc in selected if doc.fields.get(order_by.field) is not None]
    ordered.sort(key=lambda doc: (doc.fields[order_by.field], doc.id), reverse=order_by.descending)
    return ordered


def parse_documents(model: type[TRecord], documents: Iterable[Document]) -> list[TRecord]:
    """Validate *documents* into *model* instances, dropping malformed ones."""
    records: list[TRecord] = []
    for doc in documents:
        try:
            records.append(model.model_validate({**doc.fields, "id": doc.id}))
        except ValidationError as exc:
            _logger.warning(
                "Dropping malformed %s document id=%s: %s",
                model.__name__,
                doc.id,
                exc.errors(include_url=False),
            )
    return records


async def first_snapshot(
    store: RecordStore,
    collection: str,
    *,
    filters: Sequence[FieldFilter] = (),
    order_by: OrderBy | None = None,
    timeout: float | None = None,
) -> list[Document]:
    """One-shot read: subscribe, wait for the first snapshot, close."""
    loop = asyncio.get_running_loop()
    fut: asyncio.Future[list[Document]] = loop.create_future()

    def _on_snapshot(documents: list[Document]) -> None:
        if not fut.done():
            fut.set_result(documents)

    def _on_error(exc: Exception) -> None:
        if not fut.done():
            fut.set_exception(exc)

    subscription = store.subscribe(
        collection,
        filters=filters,
        order_by=order_by,
        on_snapshot=_on_snapshot,
        on_error=_on_error,
    )
    try:
        return await asyncio.wait_for(fut, timeout)
    finally:
        subscription.close()
