"""Firestore-backed document store (firebase-admin)"""

import logging
from typing import Optional

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from ..exceptions import BatchCommitError, DocumentExistsError, DocumentNotFoundError, IndexUnavailableError
from ..firebase import get_firebase_app
from .base import Document, DocumentStore, Filter, WriteOp

logger = logging.getLogger(__name__)


class FirestoreDocumentStore(DocumentStore):
    def __init__(self, client=None):
        self.client = client or firestore.client(app=get_firebase_app())

    def _ref(self, collection: str, doc_id: str):
        return self.client.collection(collection).document(doc_id)

    def _run_query(self, collection: str, filters: list[Filter]) -> list[Document]:
        query = self.client.collection(collection)
        for f in filters:
            query = query.where(filter=FieldFilter(f.field, f.op, f.value))
        try:
            return [{**(snap.to_dict() or {}), "id": snap.id} for snap in query.stream()]
        except google_exceptions.FailedPrecondition as e:
            # Composite index not built (yet) for this filter combination
            raise IndexUnavailableError(str(e)) from e

    def get_document(self, collection: str, doc_id: str) -> Optional[Document]:
        snap = self._ref(collection, doc_id).get()
        if not snap.exists:
            return None
        return {**(snap.to_dict() or {}), "id": snap.id}

    def create_document(self, collection: str, data: dict, doc_id: Optional[str] = None) -> str:
        ref = self._ref(collection, doc_id) if doc_id else self.client.collection(collection).document()
        try:
            ref.create(_strip_id(data))
        except google_exceptions.Conflict as e:
            raise DocumentExistsError(collection, ref.id) from e
        return ref.id

    def update_document(self, collection: str, doc_id: str, data: dict) -> None:
        try:
            self._ref(collection, doc_id).update(_strip_id(data))
        except google_exceptions.NotFound as e:
            raise DocumentNotFoundError(collection, doc_id) from e

    def delete_document(self, collection: str, doc_id: str) -> None:
        self._ref(collection, doc_id).delete()

    def _commit(self, operations: list[WriteOp]) -> int:
        try:
            if any(op.kind == "create_if_absent" for op in operations):
                return self._commit_in_transaction(operations)

            batch = self.client.batch()
            created = 0
            for op in operations:
                created += _stage(batch, self._ref(op.collection, op.doc_id), op)
            batch.commit()
            return created
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"❌ Firestore batch of {len(operations)} operations rejected: {e}")
            raise BatchCommitError(str(e)) from e

    def _commit_in_transaction(self, operations: list[WriteOp]) -> int:
        """create_if_absent needs reads before writes, so the batch runs as a transaction"""
        transaction = self.client.transaction()

        @firestore.transactional
        def apply(transaction) -> int:
            refs = [self._ref(op.collection, op.doc_id) for op in operations]
            existing = set()
            # All reads must happen before the first write
            for index, op in enumerate(operations):
                if op.kind == "create_if_absent" and refs[index].get(transaction=transaction).exists:
                    existing.add(index)

            created = 0
            for index, op in enumerate(operations):
                if index in existing:
                    continue
                created += _stage(transaction, refs[index], op)
            return created

        return apply(transaction)


def _strip_id(data: dict) -> dict:
    return {key: value for key, value in data.items() if key != "id"}


def _stage(writer, ref, op: WriteOp) -> int:
    """Stage one op on a WriteBatch or Transaction; returns 1 for creates"""
    data = _strip_id(op.data)
    if op.kind in ("create", "create_if_absent"):
        writer.create(ref, data)
        return 1
    if op.kind == "set":
        writer.set(ref, data)
    elif op.kind == "update":
        writer.update(ref, data)
    elif op.kind == "delete":
        writer.delete(ref)
    else:
        raise ValueError(f"Unknown write operation: {op.kind}")
    return 0
