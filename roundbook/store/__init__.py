from ..config import STORE_BACKEND
from .base import Document, DocumentStore, Filter, WriteOp, apply_filters, new_document_id

_store = None


def get_store() -> DocumentStore:
    """Return the process-wide document store for the configured backend"""
    global _store
    if _store is None:
        if STORE_BACKEND == "firestore":
            from .firestore import FirestoreDocumentStore

            _store = FirestoreDocumentStore()
        else:
            from .sql import SqlDocumentStore

            _store = SqlDocumentStore()
    return _store


__all__ = [
    "Document",
    "DocumentStore",
    "Filter",
    "WriteOp",
    "apply_filters",
    "get_store",
    "new_document_id",
]
