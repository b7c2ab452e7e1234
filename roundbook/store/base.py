"""
Document store interface.

The scheduling core talks to its backing database only through this
collection / query / batch interface so the same logic runs against
Firestore in production and SQL (or SQLite in tests) elsewhere.
"""

import logging
import operator
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from ..config import FIRESTORE_IN_QUERY_LIMIT, MAX_BATCH_OPERATIONS
from ..exceptions import BatchCommitError, IndexUnavailableError

logger = logging.getLogger(__name__)

Document = dict[str, Any]

_COMPARATORS = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@dataclass(frozen=True)
class Filter:
    """Equality, range or in-list predicate on a named field"""

    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in _COMPARATORS and self.op != "in":
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, document: Document) -> bool:
        # Documents without the field never match, same as Firestore
        if self.field not in document or document[self.field] is None:
            return False
        actual = document[self.field]
        if self.op == "in":
            return actual in self.value
        try:
            return _COMPARATORS[self.op](actual, self.value)
        except TypeError:
            return False


def apply_filters(documents: Iterable[Document], filters: Iterable[Filter]) -> list[Document]:
    filters = list(filters)
    return [doc for doc in documents if all(f.matches(doc) for f in filters)]


@dataclass
class WriteOp:
    """One operation inside an atomic batch"""

    kind: str  # create | create_if_absent | set | update | delete
    collection: str
    doc_id: str
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, collection: str, data: dict, doc_id: Optional[str] = None) -> "WriteOp":
        return cls("create", collection, doc_id or new_document_id(), dict(data))

    @classmethod
    def create_if_absent(cls, collection: str, doc_id: str, data: dict) -> "WriteOp":
        return cls("create_if_absent", collection, doc_id, dict(data))

    @classmethod
    def set(cls, collection: str, doc_id: str, data: dict) -> "WriteOp":
        return cls("set", collection, doc_id, dict(data))

    @classmethod
    def update(cls, collection: str, doc_id: str, data: dict) -> "WriteOp":
        return cls("update", collection, doc_id, dict(data))

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> "WriteOp":
        return cls("delete", collection, doc_id)


def new_document_id() -> str:
    """20-character random id, same shape as Firestore auto ids"""
    return uuid.uuid4().hex[:20]


class DocumentStore(ABC):
    """Collection-query-batch interface over clients, jobs and service plans"""

    in_query_limit = FIRESTORE_IN_QUERY_LIMIT
    max_batch_operations = MAX_BATCH_OPERATIONS

    def query_documents(self, collection: str, filters: Optional[list[Filter]] = None) -> list[Document]:
        """
        Return documents in ``collection`` matching every filter.

        At most one "in" filter is allowed per query. Value lists longer than
        ``in_query_limit`` are split into several queries and merged by id.
        """
        filters = list(filters or [])
        in_filters = [f for f in filters if f.op == "in"]
        if len(in_filters) > 1:
            raise IndexUnavailableError("Only one 'in' filter is supported per query")
        if not in_filters:
            return self._run_query(collection, filters)

        in_filter = in_filters[0]
        values = list(in_filter.value)
        if not values:
            return []
        others = [f for f in filters if f is not in_filter]

        merged: dict[str, Document] = {}
        for start in range(0, len(values), self.in_query_limit):
            chunk = Filter(in_filter.field, "in", values[start : start + self.in_query_limit])
            for doc in self._run_query(collection, [*others, chunk]):
                merged.setdefault(doc["id"], doc)
        return list(merged.values())

    def batch_write(self, operations: list[WriteOp]) -> int:
        """
        Commit all operations atomically.

        Returns the number of documents created. ``create_if_absent`` ops whose
        document already exists are skipped and not counted.
        """
        if not operations:
            return 0
        if len(operations) > self.max_batch_operations:
            raise BatchCommitError(
                f"Batch of {len(operations)} operations exceeds limit of {self.max_batch_operations}"
            )
        return self._commit(operations)

    @abstractmethod
    def _run_query(self, collection: str, filters: list[Filter]) -> list[Document]:
        """Run a query with at most one (already chunked) 'in' filter"""

    @abstractmethod
    def _commit(self, operations: list[WriteOp]) -> int:
        """Apply operations all-or-nothing, raising BatchCommitError on failure"""

    @abstractmethod
    def get_document(self, collection: str, doc_id: str) -> Optional[Document]:
        ...

    @abstractmethod
    def create_document(self, collection: str, data: dict, doc_id: Optional[str] = None) -> str:
        ...

    @abstractmethod
    def update_document(self, collection: str, doc_id: str, data: dict) -> None:
        ...

    @abstractmethod
    def delete_document(self, collection: str, doc_id: str) -> None:
        ...
