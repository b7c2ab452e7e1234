"""Scheduling repository - Document store operations for clients, plans, jobs and completed weeks"""

import logging
from datetime import date, datetime
from typing import Optional, TypeVar

from pydantic import BaseModel, ValidationError

from ...exceptions import IndexUnavailableError
from ...shared.dates import format_date
from ...store import Document, DocumentStore, Filter, WriteOp, apply_filters
from .schemas import (
    CLIENTS_COLLECTION,
    COMPLETED_WEEKS_COLLECTION,
    JOBS_COLLECTION,
    SERVICE_PLANS_COLLECTION,
    Client,
    Job,
    ServicePlan,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def now_iso() -> str:
    return datetime.now().isoformat()


def query_with_fallback(
    store: DocumentStore, collection: str, filters: list[Filter], fallback_filters: list[Filter]
) -> list[Document]:
    """
    Run ``filters`` as one query; if the store has no index for it, run the
    broader ``fallback_filters`` query and apply the rest in memory.
    """
    try:
        return store.query_documents(collection, filters)
    except IndexUnavailableError as e:
        logger.warning(f"⚠️ {collection} query needs a composite index, filtering in memory: {e}")
        broad = store.query_documents(collection, fallback_filters)
        remaining = [f for f in filters if f not in fallback_filters]
        return apply_filters(broad, remaining)


def _owned_by(document: Optional[Document], owner_id: str) -> bool:
    return document is not None and document.get("ownerId") == owner_id


def _validate_each(model: type[ModelT], documents: list[Document]) -> list[ModelT]:
    """Validate documents one by one, skipping any that are malformed"""
    results = []
    for document in documents:
        try:
            results.append(model.model_validate(document))
        except ValidationError as e:
            logger.warning(
                f"⚠️ Skipping malformed {model.__name__} document {document.get('id')}: "
                f"{e.error_count()} validation error(s)"
            )
    return results


class ClientRepository:
    """Repository for client documents"""

    @staticmethod
    def get_client(store: DocumentStore, owner_id: str, client_id: str) -> Optional[Client]:
        document = store.get_document(CLIENTS_COLLECTION, client_id)
        if not _owned_by(document, owner_id):
            return None
        return Client.model_validate(document)

    @staticmethod
    def get_active_clients(store: DocumentStore, owner_id: str) -> list[Client]:
        owner = Filter("ownerId", "==", owner_id)
        documents = query_with_fallback(
            store, CLIENTS_COLLECTION, [owner, Filter("status", "==", "active")], [owner]
        )
        return _validate_each(Client, documents)

    @staticmethod
    def update_client(store: DocumentStore, client_id: str, updates: dict) -> None:
        store.update_document(CLIENTS_COLLECTION, client_id, updates)

    @staticmethod
    def list_owner_ids(store: DocumentStore) -> list[str]:
        """Every owner account that has at least one client"""
        owners = {doc.get("ownerId") for doc in store.query_documents(CLIENTS_COLLECTION, [])}
        return sorted(owner for owner in owners if owner)


class ServicePlanRepository:
    """Repository for service plan documents"""

    @staticmethod
    def create_plan(store: DocumentStore, owner_id: str, plan: ServicePlan) -> ServicePlan:
        now = now_iso()
        stored = plan.model_copy(update={"owner_id": owner_id, "created_at": now, "updated_at": now})
        plan_id = store.create_document(SERVICE_PLANS_COLLECTION, stored.to_document())
        return stored.model_copy(update={"id": plan_id})

    @staticmethod
    def get_plan(store: DocumentStore, owner_id: str, plan_id: str) -> Optional[ServicePlan]:
        document = store.get_document(SERVICE_PLANS_COLLECTION, plan_id)
        if not _owned_by(document, owner_id):
            return None
        return ServicePlan.model_validate(document)

    @staticmethod
    def get_plans_for_client(store: DocumentStore, owner_id: str, client_id: str) -> list[ServicePlan]:
        owner = Filter("ownerId", "==", owner_id)
        documents = query_with_fallback(
            store, SERVICE_PLANS_COLLECTION, [owner, Filter("clientId", "==", client_id)], [owner]
        )
        return _validate_each(ServicePlan, documents)

    @staticmethod
    def update_plan(store: DocumentStore, plan_id: str, updates: dict) -> None:
        store.update_document(SERVICE_PLANS_COLLECTION, plan_id, {**updates, "updatedAt": now_iso()})


class JobRepository:
    """Repository for job documents"""

    @staticmethod
    def get_job(store: DocumentStore, owner_id: str, job_id: str) -> Optional[Job]:
        document = store.get_document(JOBS_COLLECTION, job_id)
        if not _owned_by(document, owner_id):
            return None
        return Job.model_validate(document)

    @staticmethod
    def get_jobs_for_client(store: DocumentStore, owner_id: str, client_id: str) -> list[Job]:
        owner = Filter("ownerId", "==", owner_id)
        documents = query_with_fallback(
            store, JOBS_COLLECTION, [owner, Filter("clientId", "==", client_id)], [owner]
        )
        return _validate_each(Job, documents)

    @staticmethod
    def get_jobs(store: DocumentStore, owner_id: str) -> list[Job]:
        documents = store.query_documents(JOBS_COLLECTION, [Filter("ownerId", "==", owner_id)])
        return _validate_each(Job, documents)

    @staticmethod
    def get_jobs_in_range(
        store: DocumentStore, owner_id: str, start: date, end: date, status: Optional[str] = None
    ) -> list[Job]:
        """Jobs scheduled in [start, end)"""
        owner = Filter("ownerId", "==", owner_id)
        filters = [
            owner,
            Filter("scheduledTime", ">=", f"{format_date(start)}T00:00:00"),
            Filter("scheduledTime", "<", f"{format_date(end)}T00:00:00"),
        ]
        if status:
            filters.append(Filter("status", "==", status))
        documents = query_with_fallback(store, JOBS_COLLECTION, filters, [owner])
        return _validate_each(Job, documents)

    @staticmethod
    def update_job(store: DocumentStore, job_id: str, updates: dict) -> None:
        store.update_document(JOBS_COLLECTION, job_id, updates)

    @staticmethod
    def delete_job(store: DocumentStore, job_id: str) -> None:
        store.delete_document(JOBS_COLLECTION, job_id)


class CompletedWeekRepository:
    """Per-owner record of which weekdays have been closed out on the runsheet"""

    @staticmethod
    def _doc_id(owner_id: str, week_start: date) -> str:
        return f"{owner_id}_{format_date(week_start)}"

    @staticmethod
    def get_completed_days(store: DocumentStore, owner_id: str, week_start: date) -> list[str]:
        document = store.get_document(
            COMPLETED_WEEKS_COLLECTION, CompletedWeekRepository._doc_id(owner_id, week_start)
        )
        if not document:
            return []
        days = document.get("completedDays")
        return list(days) if isinstance(days, list) else []

    @staticmethod
    def set_completed_days(store: DocumentStore, owner_id: str, week_start: date, days: list[str]) -> None:
        store.batch_write(
            [
                WriteOp.set(
                    COMPLETED_WEEKS_COLLECTION,
                    CompletedWeekRepository._doc_id(owner_id, week_start),
                    {
                        "ownerId": owner_id,
                        "weekStart": format_date(week_start),
                        "completedDays": days,
                        "updatedAt": now_iso(),
                    },
                )
            ]
        )
