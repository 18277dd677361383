"""Firestore REST record store.

Writes go straight to the documents API. The REST surface has no listen
stream, so live queries are served by polling ``:runQuery`` every
``FleetConfig.poll_interval`` seconds and delivering a snapshot only when
the result set actually changed (the first poll always delivers).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from fleettraq._transport import Transport
from fleettraq.config import FleetConfig
from fleettraq.exceptions import FleetStoreError, FleetTransportError
from fleettraq.records._firestore_codec import decode_fields, document_id, encode_fields, encode_value
from fleettraq.records.base import (
    Document,
    ErrorCallback,
    FieldFilter,
    OrderBy,
    SnapshotCallback,
    Subscription,
)

_logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str | None]]


def _store_error(exc: FleetTransportError, operation: str, collection: str) -> FleetStoreError:
    return FleetStoreError(str(exc), operation=operation, collection=collection, status_code=exc.status_code)


def build_structured_query(
    collection: str,
    filters: Sequence[FieldFilter],
    order_by: OrderBy | None,
) -> dict[str, Any]:
    """Translate a collection query into a Firestore ``structuredQuery``."""
    query: dict[str, Any] = {"from": [{"collectionId": collection}]}
    field_filters = [
        {
            "fieldFilter": {
                "field": {"fieldPath": f.field},
                "op": "EQUAL",
                "value": encode_value(f.value),
            }
        }
        for f in filters
    ]
    if len(field_filters) == 1:
        query["where"] = field_filters[0]
    elif field_filters:
        query["where"] = {"compositeFilter": {"op": "AND", "filters": field_filters}}
    if order_by is not None:
        query["orderBy"] = [
            {
                "field": {"fieldPath": order_by.field},
                "direction": "DESCENDING" if order_by.descending else "ASCENDING",
            }
        ]
    return query


class FirestoreRecordStore:
    """:class:`~fleettraq.records.base.RecordStore` over the Firestore REST API."""

    def __init__(
        self,
        config: FleetConfig,
        transport: Transport,
        *,
        token_provider: TokenProvider | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._token_provider = token_provider
        self._pollers: set[asyncio.Task[None]] = set()

    async def _bearer(self) -> str | None:
        if self._token_provider is None:
            return None
        return await self._token_provider()

    def _collection_url(self, collection: str) -> str:
        return f"{self._config.documents_url}/{collection}"

    async def create(self, collection: str, fields: Mapping[str, Any]) -> str:
        try:
            response = await self._transport.request_json(
                "POST",
                self._collection_url(collection),
                payload={"fields": encode_fields(fields)},
                bearer=await self._bearer(),
            )
        except FleetTransportError as exc:
            raise _store_error(exc, "create", collection) from exc
        name = response.get("name") if isinstance(response, dict) else None
        if not isinstance(name, str) or not name:
            raise FleetStoreError("Create response missing document name", operation="create", collection=collection)
        return document_id(name)

    async def update(self, collection: str, record_id: str, fields: Mapping[str, Any]) -> None:
        params: list[tuple[str, str]] = [("updateMask.fieldPaths", key) for key in fields]
        params.append(("currentDocument.exists", "true"))
        try:
            await self._transport.request_json(
                "PATCH",
                f"{self._collection_url(collection)}/{record_id}",
                payload={"fields": encode_fields(fields)},
                params=params,
                bearer=await self._bearer(),
            )
        except FleetTransportError as exc:
            raise _store_error(exc, "update", collection) from exc

    async def delete(self, collection: str, record_id: str) -> None:
        try:
            await self._transport.request_json(
                "DELETE",
                f"{self._collection_url(collection)}/{record_id}",
                bearer=await self._bearer(),
            )
        except FleetTransportError as exc:
            raise _store_error(exc, "delete", collection) from exc

    async def run_query(
        self,
        collection: str,
        *,
        filters: Sequence[FieldFilter] = (),
        order_by: OrderBy | None = None,
    ) -> list[Document]:
        """Execute a query once and return the matching documents."""
        try:
            response = await self._transport.request_json(
                "POST",
                f"{self._config.documents_url}:runQuery",
                payload={"structuredQuery": build_structured_query(collection, filters, order_by)},
                bearer=await self._bearer(),
            )
        except FleetTransportError as exc:
            raise _store_error(exc, "query", collection) from exc

        documents: list[Document] = []
        for row in response if isinstance(response, list) else []:
            doc = row.get("document") if isinstance(row, dict) else None
            if not isinstance(doc, dict) or "name" not in doc:
                continue
            documents.append(Document(id=document_id(doc["name"]), fields=decode_fields(doc.get("fields", {}))))
        return documents

    def subscribe(
        self,
        collection: str,
        *,
        filters: Sequence[FieldFilter] = (),
        order_by: OrderBy | None = None,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        task = asyncio.get_running_loop().create_task(
            self._poll(collection, tuple(filters), order_by, on_snapshot, on_error),
            name=f"fleettraq-poll-{collection}",
        )
        self._pollers.add(task)
        task.add_done_callback(self._pollers.discard)
        return Subscription(task.cancel)

    async def _poll(
        self,
        collection: str,
        filters: tuple[FieldFilter, ...],
        order_by: OrderBy | None,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None,
    ) -> None:
        last: list[Document] | None = None
        failing = False
        while True:
            try:
                current = await self.run_query(collection, filters=filters, order_by=order_by)
            except FleetStoreError as exc:
                # Report once per failure streak; keep polling.
                if not failing:
                    _logger.warning("Live query on %s failed: %s", collection, exc)
                    if on_error is not None:
                        on_error(exc)
                failing = True
            else:
                failing = False
                if current != last:
                    last = current
                    _logger.debug("Snapshot %s: %d documents", collection, len(current))
                    try:
                        on_snapshot(current)
                    except Exception:
                        _logger.exception("Snapshot listener for %s raised", collection)
            await asyncio.sleep(self._config.poll_interval)

    async def aclose(self) -> None:
        """Cancel every poller still running."""
        pollers = list(self._pollers)
        for task in pollers:
            task.cancel()
        if pollers:
            await asyncio.gather(*pollers, return_exceptions=True)
