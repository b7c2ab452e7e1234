"""SQLAlchemy-backed document store"""

import logging
from typing import Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..database import SessionLocal
from ..exceptions import BatchCommitError, DocumentExistsError, DocumentNotFoundError, StoreError
from ..models import StoredDocument
from .base import Document, DocumentStore, Filter, WriteOp, apply_filters, new_document_id

logger = logging.getLogger(__name__)


def _to_document(row: StoredDocument) -> Document:
    return {**(row.data or {}), "id": row.id}


def _strip_id(data: dict) -> dict:
    return {key: value for key, value in data.items() if key != "id"}


# Dialects with INSERT ... ON CONFLICT DO NOTHING
_UPSERT_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def _insert_if_absent(db: Session, collection: str, doc_id: str, data: dict) -> int:
    """Insert unless (collection, id) exists; a row written concurrently by another session counts as existing"""
    insert = _UPSERT_INSERTS[db.get_bind().dialect.name]
    statement = (
        insert(StoredDocument.__table__)
        .values(collection=collection, id=doc_id, owner_id=data.get("ownerId"), data=data)
        .on_conflict_do_nothing(index_elements=["collection", "id"])
    )
    return db.execute(statement).rowcount


class SqlDocumentStore(DocumentStore):
    """
    Documents live in one ``documents`` table keyed by (collection, id).

    Owner equality filters are pushed down to the indexed ``owner_id``
    column; every other predicate is evaluated in memory.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def _run_query(self, collection: str, filters: list[Filter]) -> list[Document]:
        owner_filters = [f for f in filters if f.field == "ownerId" and f.op == "=="]
        remaining = [f for f in filters if not any(f is o for o in owner_filters)]

        db = self.session_factory()
        try:
            query = db.query(StoredDocument).filter(StoredDocument.collection == collection)
            for owner_filter in owner_filters:
                query = query.filter(StoredDocument.owner_id == owner_filter.value)
            documents = [_to_document(row) for row in query.order_by(StoredDocument.id).all()]
        finally:
            db.close()

        return apply_filters(documents, remaining)

    def get_document(self, collection: str, doc_id: str) -> Optional[Document]:
        db = self.session_factory()
        try:
            row = db.get(StoredDocument, (collection, doc_id))
            return _to_document(row) if row else None
        finally:
            db.close()

    def create_document(self, collection: str, data: dict, doc_id: Optional[str] = None) -> str:
        doc_id = doc_id or new_document_id()
        self._apply_single(WriteOp("create", collection, doc_id, dict(data)))
        return doc_id

    def update_document(self, collection: str, doc_id: str, data: dict) -> None:
        self._apply_single(WriteOp.update(collection, doc_id, data))

    def delete_document(self, collection: str, doc_id: str) -> None:
        self._apply_single(WriteOp.delete(collection, doc_id))

    def _apply_single(self, op: WriteOp) -> None:
        db = self.session_factory()
        try:
            self._apply(db, op)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _commit(self, operations: list[WriteOp]) -> int:
        db = self.session_factory()
        created = 0
        try:
            for op in operations:
                created += self._apply(db, op)
            db.commit()
            return created
        except (StoreError, SQLAlchemyError) as e:
            db.rollback()
            logger.error(f"❌ Batch of {len(operations)} operations rejected: {e}")
            raise BatchCommitError(str(e)) from e
        finally:
            db.close()

    @staticmethod
    def _apply(db: Session, op: WriteOp) -> int:
        """Apply one operation inside an open session; returns 1 if a document was created"""
        data = _strip_id(op.data)

        if op.kind == "create_if_absent" and db.get_bind().dialect.name in _UPSERT_INSERTS:
            return _insert_if_absent(db, op.collection, op.doc_id, data)

        row = db.get(StoredDocument, (op.collection, op.doc_id))

        if op.kind in ("create", "create_if_absent"):
            if row is not None:
                if op.kind == "create_if_absent":
                    return 0
                raise DocumentExistsError(op.collection, op.doc_id)
            db.add(
                StoredDocument(
                    collection=op.collection,
                    id=op.doc_id,
                    owner_id=data.get("ownerId"),
                    data=data,
                )
            )
            db.flush()
            return 1

        if op.kind == "set":
            if row is None:
                db.add(
                    StoredDocument(
                        collection=op.collection, id=op.doc_id, owner_id=data.get("ownerId"), data=data
                    )
                )
            else:
                row.data = data
                row.owner_id = data.get("ownerId")
            db.flush()
            return 0

        if op.kind == "update":
            if row is None:
                raise DocumentNotFoundError(op.collection, op.doc_id)
            # Reassign so the JSON column is flagged dirty
            merged = {**(row.data or {}), **data}
            row.data = merged
            row.owner_id = merged.get("ownerId")
            db.flush()
            return 0

        if op.kind == "delete":
            if row is not None:
                db.delete(row)
                db.flush()
            return 0

        raise ValueError(f"Unknown write operation: {op.kind}")
