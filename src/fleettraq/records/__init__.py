"""Record store implementations and the query/document primitives they share."""

from fleettraq.records.base import (
    Document,
    FieldFilter,
    OrderBy,
    RecordStore,
    Subscription,
    apply_query,
    first_snapshot,
    parse_documents,
)
from fleettraq.records.firestore import FirestoreRecordStore
from fleettraq.records.memory import InMemoryRecordStore

__all__ = [
    "Document",
    "FieldFilter",
    "FirestoreRecordStore",
    "InMemoryRecordStore",
    "OrderBy",
    "RecordStore",
    "Subscription",
    "apply_query",
    "first_snapshot",
    "parse_documents",
]
