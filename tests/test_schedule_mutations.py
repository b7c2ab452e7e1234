from datetime import date

import pytest

from roundbook.domain.scheduling.mutations import ScheduleMutationService
from roundbook.domain.scheduling.schemas import (
    CLIENTS_COLLECTION,
    JOBS_COLLECTION,
    SERVICE_PLANS_COLLECTION,
    ConvertLegacyRequest,
    ServicePlanCreate,
)
from roundbook.exceptions import (
    BatchCommitError,
    ClientNotFoundError,
    OwnerNotResolvedError,
    PlanExpiredError,
    PlanNotFoundError,
    ScheduleRegenerationError,
    StoreError,
)
from roundbook.store.sql import SqlDocumentStore

OWNER = "owner-1"
TODAY = date(2024, 1, 10)


class StuckJobStore(SqlDocumentStore):
    def delete_document(self, collection, doc_id):
        if doc_id == "stuck":
            raise StoreError("Missing or insufficient permissions")
        super().delete_document(collection, doc_id)


class RejectingBatchStore(SqlDocumentStore):
    def _commit(self, operations):
        raise BatchCommitError("Missing or insufficient permissions")


def seed_plan_jobs(seed):
    seed.client()
    seed.plan()
    seed.job("pending", "2024-01-29", planId="plan-1")
    seed.job("scheduled", "2024-02-26", planId="plan-1", status="scheduled")
    seed.job("in-progress", "2024-01-10", planId="plan-1", status="in_progress")
    seed.job("completed", "2024-01-01", planId="plan-1", status="completed")
    seed.job("accounted", "2023-12-04", planId="plan-1", status="accounted")
    seed.job("legacy", "2024-03-25")
    seed.job("custom", "2024-04-22", planId="plan-1", hasCustomPrice=True, price=50)
    seed.job("other-service", "2024-01-29", serviceId="gutters")


def job_field(store, job_id, field):
    return store.get_document(JOBS_COLLECTION, job_id)[field]


def test_rename_reaches_upcoming_jobs_only(store, seed):
    seed_plan_jobs(seed)

    result = ScheduleMutationService(store, OWNER, TODAY).update_plan("plan-1", {"service_type": "premium-windows"})

    assert result.renamed_jobs == 5
    assert result.plan.service_type == "premium-windows"
    for job_id in ("pending", "scheduled", "in-progress", "legacy", "custom"):
        assert job_field(store, job_id, "serviceId") == "premium-windows"
    for job_id in ("completed", "accounted"):
        assert job_field(store, job_id, "serviceId") == "window-cleaning"
    assert job_field(store, "other-service", "serviceId") == "gutters"
    assert store.get_document(SERVICE_PLANS_COLLECTION, "plan-1")["serviceType"] == "premium-windows"


def test_reprice_skips_custom_and_in_progress_jobs(store, seed):
    seed_plan_jobs(seed)

    result = ScheduleMutationService(store, OWNER, TODAY).update_plan("plan-1", {"price": 35})

    assert result.repriced_jobs == 3
    for job_id in ("pending", "scheduled", "legacy"):
        assert job_field(store, job_id, "price") == 35
    assert job_field(store, "custom", "price") == 50
    assert job_field(store, "in-progress", "price") == 30
    assert job_field(store, "completed", "price") == 30
    assert job_field(store, "other-service", "price") == 30


def test_rename_and_reprice_in_one_edit(store, seed):
    seed_plan_jobs(seed)

    result = ScheduleMutationService(store, OWNER, TODAY).update_plan(
        "plan-1", {"service_type": "premium-windows", "price": 35}
    )

    assert (result.renamed_jobs, result.repriced_jobs) == (5, 3)
    doc = store.get_document(JOBS_COLLECTION, "pending")
    assert (doc["serviceId"], doc["price"]) == ("premium-windows", 35)
    plan = store.get_document(SERVICE_PLANS_COLLECTION, "plan-1")
    assert (plan["serviceType"], plan["price"]) == ("premium-windows", 35)
    assert "updatedAt" in plan


def test_unchanged_values_write_nothing(store, seed):
    seed_plan_jobs(seed)
    before = store.get_document(SERVICE_PLANS_COLLECTION, "plan-1")

    result = ScheduleMutationService(store, OWNER, TODAY).update_plan("plan-1", {"price": 30})

    assert (result.renamed_jobs, result.repriced_jobs, result.schedule_changed) == (0, 0, False)
    assert store.get_document(SERVICE_PLANS_COLLECTION, "plan-1") == before


def test_schedule_edit_leaves_jobs_until_regenerate_requested(store, seed, dates_of):
    seed_plan_jobs(seed)
    before = dates_of()

    result = ScheduleMutationService(store, OWNER, TODAY).update_plan("plan-1", {"frequency_weeks": 2})

    assert result.schedule_changed is True
    assert result.regeneration is None
    assert dates_of() == before
    assert store.get_document(SERVICE_PLANS_COLLECTION, "plan-1")["frequencyWeeks"] == 2


def test_schedule_edit_with_regenerate_rebuilds_future_jobs(store, seed, dates_of):
    seed.client()
    seed.plan()
    seed.job("pending", "2024-01-29", planId="plan-1")
    seed.job("scheduled", "2024-02-26", planId="plan-1", status="scheduled")
    seed.job("completed", "2024-01-01", planId="plan-1", status="completed")

    result = ScheduleMutationService(store, OWNER, TODAY).update_plan(
        "plan-1", {"frequency_weeks": 8}, regenerate=True
    )

    assert result.schedule_changed is True
    assert result.regeneration.deleted == 2
    assert result.regeneration.created == 6
    assert dates_of() == [
        "2024-01-01",
        "2024-02-26",
        "2024-04-22",
        "2024-06-17",
        "2024-08-12",
        "2024-10-07",
        "2024-12-02",
    ]


def test_regenerate_tolerates_failed_deletes(session_factory):
    store = StuckJobStore(session_factory)
    store.create_document("clients", {"ownerId": OWNER, "status": "active"}, doc_id="client-1")
    store.create_document(
        "servicePlans",
        {"ownerId": OWNER, "clientId": "client-1", "serviceType": "window-cleaning", "frequencyWeeks": 4, "startDate": "2024-01-01"},
        doc_id="plan-1",
    )
    for job_id, day, status in (("pending", "2024-01-29", "pending"), ("stuck", "2024-02-26", "scheduled")):
        store.create_document(
            "jobs",
            {"ownerId": OWNER, "clientId": "client-1", "planId": "plan-1", "scheduledTime": f"{day}T09:00:00", "status": status},
            doc_id=job_id,
        )

    summary = ScheduleMutationService(store, OWNER, TODAY).regenerate_plan("plan-1")

    assert (summary.deleted, summary.failed_deletes) == (1, 1)
    assert summary.created == 12
    assert store.get_document("jobs", "stuck") is not None


def test_failed_regeneration_reports_deletions(session_factory):
    store = RejectingBatchStore(session_factory)
    store.create_document("clients", {"ownerId": OWNER, "status": "active"}, doc_id="client-1")
    store.create_document(
        "servicePlans",
        {"ownerId": OWNER, "clientId": "client-1", "serviceType": "window-cleaning", "frequencyWeeks": 4, "startDate": "2024-01-01"},
        doc_id="plan-1",
    )
    store.create_document(
        "jobs",
        {"ownerId": OWNER, "clientId": "client-1", "planId": "plan-1", "scheduledTime": "2024-01-29T09:00:00", "status": "pending"},
        doc_id="pending",
    )

    with pytest.raises(ScheduleRegenerationError) as exc_info:
        ScheduleMutationService(store, OWNER, TODAY).regenerate_plan("plan-1")

    assert exc_info.value.deleted == 1
    assert store.get_document("jobs", "pending") is None


def test_deactivating_a_plan_removes_upcoming_jobs(store, seed):
    seed.client()
    seed.plan()
    seed.job("pending", "2024-01-29", planId="plan-1")
    seed.job("scheduled", "2024-02-26", planId="plan-1", status="scheduled")
    seed.job("in-progress", "2024-01-10", planId="plan-1", status="in_progress")
    seed.job("completed", "2024-01-01", planId="plan-1", status="completed")

    summary = ScheduleMutationService(store, OWNER, TODAY).set_plan_active("plan-1", False)

    assert summary.is_active is False
    assert summary.deleted == 3
    remaining = [doc["id"] for doc in store.query_documents(JOBS_COLLECTION, [])]
    assert remaining == ["completed"]
    assert store.get_document(SERVICE_PLANS_COLLECTION, "plan-1")["isActive"] is False


def test_activating_a_plan_generates_jobs(store, seed, dates_of):
    seed.client()
    seed.plan(isActive=False)

    summary = ScheduleMutationService(store, OWNER, TODAY).set_plan_active("plan-1", True)

    assert summary.is_active is True
    assert summary.created == 13
    assert dates_of()[0] == "2024-01-29"
    assert store.get_document(SERVICE_PLANS_COLLECTION, "plan-1")["isActive"] is True


def test_delete_additional_service_removes_its_upcoming_jobs(store, seed):
    seed.client(
        additionalServices=[
            {"id": "svc-1", "serviceType": "gutters", "frequency": 12, "nextVisit": "2024-02-01"},
            {"id": "svc-2", "serviceType": "solar", "frequency": 8, "nextVisit": "2024-02-01"},
        ]
    )
    seed.job("gutters-pending", "2024-02-01", serviceId="gutters")
    seed.job("gutters-done", "2023-11-09", serviceId="gutters", status="completed")
    seed.job("gutters-plan", "2024-03-01", serviceId="gutters", planId="plan-x")
    seed.job("windows", "2024-02-01")

    summary = ScheduleMutationService(store, OWNER, TODAY).delete_additional_service("client-1", "svc-1")

    assert (summary.deleted, summary.failed_deletes) == (1, 0)
    remaining = sorted(doc["id"] for doc in store.query_documents(JOBS_COLLECTION, []))
    assert remaining == ["gutters-done", "gutters-plan", "windows"]
    services = store.get_document(CLIENTS_COLLECTION, "client-1")["additionalServices"]
    assert [s["id"] for s in services] == ["svc-2"]


def test_delete_unknown_additional_service_is_a_no_op(store, seed):
    seed.client()
    summary = ScheduleMutationService(store, OWNER, TODAY).delete_additional_service("client-1", "svc-9")
    assert (summary.deleted, summary.failed_deletes) == (0, 0)


def test_plans_are_owner_scoped(store, seed):
    seed.client()
    seed.plan("plan-x", owner_id="owner-2")
    service = ScheduleMutationService(store, OWNER, TODAY)

    with pytest.raises(PlanNotFoundError):
        service.update_plan("plan-x", {"price": 10})
    with pytest.raises(PlanNotFoundError):
        service.regenerate_plan("missing")


def test_owner_is_required(store):
    with pytest.raises(OwnerNotResolvedError):
        ScheduleMutationService(store, None)


def test_create_and_list_plans(store, seed):
    seed.client()
    service = ScheduleMutationService(store, OWNER, TODAY)

    plan = service.create_plan(
        "client-1", ServicePlanCreate(service_type="gutters", frequency_weeks=12, start_date="2024-02-01", price=40)
    )

    assert plan.owner_id == OWNER
    assert [p.id for p in service.list_plans("client-1")] == [plan.id]
    with pytest.raises(ClientNotFoundError):
        service.create_plan("client-9", ServicePlanCreate(service_type="gutters"))


def test_convert_legacy_through_service(store, seed):
    seed.client(frequency=6, nextVisit="2024-01-15", quote=22)

    plan = ScheduleMutationService(store, OWNER, TODAY).convert_legacy("client-1", ConvertLegacyRequest())

    assert (plan.service_type, plan.frequency_weeks, plan.start_date, plan.price) == ("window-cleaning", 6, "2024-01-15", 22)


def test_null_for_required_fields_is_ignored(store, seed):
    seed_plan_jobs(seed)
    before = store.get_document(SERVICE_PLANS_COLLECTION, "plan-1")

    result = ScheduleMutationService(store, OWNER, TODAY).update_plan("plan-1", {"service_type": None, "price": None})

    assert (result.renamed_jobs, result.repriced_jobs, result.schedule_changed) == (0, 0, False)
    assert store.get_document(SERVICE_PLANS_COLLECTION, "plan-1") == before


def test_last_service_date_can_be_cleared(store, seed):
    seed.client()
    seed.plan(lastServiceDate="2024-06-01")

    result = ScheduleMutationService(store, OWNER, TODAY).update_plan("plan-1", {"last_service_date": None})

    assert result.schedule_changed is True
    assert result.plan.last_service_date is None
    assert store.get_document(SERVICE_PLANS_COLLECTION, "plan-1")["lastServiceDate"] is None


def test_expired_plan_cannot_be_reactivated(store, seed):
    seed.client()
    seed.plan(isActive=False, lastServiceDate="2024-01-05")

    with pytest.raises(PlanExpiredError):
        ScheduleMutationService(store, OWNER, TODAY).set_plan_active("plan-1", True)

    assert store.get_document(SERVICE_PLANS_COLLECTION, "plan-1")["isActive"] is False
    assert store.query_documents(JOBS_COLLECTION, []) == []
