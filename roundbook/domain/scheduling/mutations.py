"""Schedule mutations - keep existing jobs consistent when a service plan is edited"""

import logging
from datetime import date
from typing import Optional

from ...exceptions import (
    ClientNotFoundError,
    OwnerNotResolvedError,
    PlanExpiredError,
    PlanNotFoundError,
    ScheduleRegenerationError,
    StoreError,
)
from ...store import DocumentStore, WriteOp
from .generator import JobGenerator
from .plans import convert_legacy_to_plan, is_expired, job_belongs_to_plan
from .repository import ClientRepository, JobRepository, ServicePlanRepository, now_iso
from .schemas import (
    JOBS_COLLECTION,
    REPRICEABLE_STATUSES,
    SERVICE_PLANS_COLLECTION,
    UPCOMING_STATUSES,
    Client,
    ConvertLegacyRequest,
    DeleteSummary,
    Job,
    PlanUpdateResult,
    RegenerateSummary,
    ServicePlan,
    ServicePlanCreate,
    ToggleSummary,
)

logger = logging.getLogger(__name__)

# Editing any of these moves occurrences; existing jobs stay put until an explicit regenerate
SCHEDULE_FIELDS = ("schedule_type", "frequency_weeks", "start_date", "scheduled_date", "last_service_date")
# Fields an edit may set back to null
CLEARABLE_FIELDS = ("start_date", "last_service_date", "scheduled_date")


class ScheduleMutationService:
    """Service layer for plan edits and the job changes they imply"""

    def __init__(self, store: DocumentStore, owner_id: str, today: Optional[date] = None):
        if not owner_id:
            raise OwnerNotResolvedError()
        self.store = store
        self.owner_id = owner_id
        self.today = today or date.today()
        self.clients = ClientRepository()
        self.plans = ServicePlanRepository()
        self.jobs = JobRepository()

    def _generator(self) -> JobGenerator:
        return JobGenerator(self.store, self.owner_id, self.today)

    def get_plan(self, plan_id: str) -> ServicePlan:
        plan = self.plans.get_plan(self.store, self.owner_id, plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan

    def get_client(self, client_id: str) -> Client:
        client = self.clients.get_client(self.store, self.owner_id, client_id)
        if client is None:
            raise ClientNotFoundError(client_id)
        return client

    def _plan_jobs(self, plan: ServicePlan, statuses: tuple) -> list[Job]:
        jobs = self.jobs.get_jobs_for_client(self.store, self.owner_id, plan.client_id)
        return [job for job in jobs if job.status in statuses and job_belongs_to_plan(job, plan)]

    def _delete_jobs(self, jobs: list[Job]) -> DeleteSummary:
        """Delete one by one; a failed delete is counted, not fatal"""
        summary = DeleteSummary()
        for job in jobs:
            try:
                self.jobs.delete_job(self.store, job.id)
                summary.deleted += 1
            except StoreError as e:
                summary.failed_deletes += 1
                logger.warning(f"⚠️ Failed to delete job {job.id}: {e}")
        if summary.failed_deletes:
            logger.warning(f"⚠️ {summary.failed_deletes} job deletion(s) failed, {summary.deleted} succeeded")
        return summary

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def list_plans(self, client_id: str) -> list[ServicePlan]:
        self.get_client(client_id)
        return self.plans.get_plans_for_client(self.store, self.owner_id, client_id)

    def create_plan(self, client_id: str, data: ServicePlanCreate) -> ServicePlan:
        self.get_client(client_id)
        plan = ServicePlan(client_id=client_id, **data.model_dump())
        created = self.plans.create_plan(self.store, self.owner_id, plan)
        logger.info(f"✅ Created {created.schedule_type} plan {created.id} ({created.service_type}) for client {client_id}")
        return created

    def convert_legacy(self, client_id: str, data: ConvertLegacyRequest) -> ServicePlan:
        client = self.get_client(client_id)
        return convert_legacy_to_plan(
            self.store,
            self.owner_id,
            client,
            service_type=data.service_type,
            schedule_type=data.schedule_type,
            frequency_weeks=data.frequency_weeks,
            start_date=data.start_date,
            price=data.price,
            today=self.today,
        )

    def update_plan(self, plan_id: str, updates: dict, regenerate: bool = False) -> PlanUpdateResult:
        """
        Apply plan edits and carry them onto the plan's existing jobs.

        Renames reach every upcoming job, re-pricing only pending/scheduled
        jobs without a custom price. Both go in the same batch as the plan
        update. Schedule edits never touch existing jobs unless ``regenerate``
        is passed, in which case the plan is regenerated after the commit.
        """
        plan = self.get_plan(plan_id)
        changes = {
            key: value
            for key, value in updates.items()
            if (value is not None or key in CLEARABLE_FIELDS) and getattr(plan, key) != value
        }
        updated = ServicePlan.model_validate({**plan.model_dump(), **changes})
        result = PlanUpdateResult(plan=updated)

        if not changes:
            if regenerate:
                result.regeneration = self.regenerate_plan(plan_id)
            return result

        plan_fields = updated.model_dump(by_alias=True, include=set(changes))
        operations = [WriteOp.update(SERVICE_PLANS_COLLECTION, plan_id, {**plan_fields, "updatedAt": now_iso()})]

        job_updates: dict[str, dict] = {}
        if "service_type" in changes:
            for job in self._plan_jobs(plan, UPCOMING_STATUSES):
                job_updates.setdefault(job.id, {})["serviceId"] = updated.service_type
                result.renamed_jobs += 1

        if "price" in changes and updated.price is not None:
            for job in self._plan_jobs(plan, REPRICEABLE_STATUSES):
                if job.has_custom_price:
                    continue
                job_updates.setdefault(job.id, {})["price"] = updated.price
                result.repriced_jobs += 1

        operations.extend(WriteOp.update(JOBS_COLLECTION, job_id, data) for job_id, data in job_updates.items())
        self.store.batch_write(operations)
        logger.info(
            f"✅ Plan {plan_id} updated ({', '.join(sorted(changes))}): "
            f"{result.renamed_jobs} renamed, {result.repriced_jobs} repriced"
        )

        result.schedule_changed = any(key in changes for key in SCHEDULE_FIELDS)
        if result.schedule_changed and regenerate:
            result.regeneration = self.regenerate_plan(plan_id)
        elif result.schedule_changed:
            logger.info(f"Schedule of plan {plan_id} changed, existing jobs left in place until regenerated")
        return result

    def regenerate_plan(self, plan_id: str) -> RegenerateSummary:
        """Delete the plan's pending/scheduled jobs and generate them again"""
        plan = self.get_plan(plan_id)
        client = self.get_client(plan.client_id)

        deletion = self._delete_jobs(self._plan_jobs(plan, REPRICEABLE_STATUSES))
        try:
            created = self._generator().create_jobs_for_service_plan(plan, client)
        except StoreError as e:
            logger.error(f"❌ Regeneration of plan {plan_id} failed after deleting {deletion.deleted} job(s): {e}")
            raise ScheduleRegenerationError(
                f"Deleted {deletion.deleted} job(s) but failed to create new ones: {e}", deletion.deleted
            ) from e

        logger.info(f"✅ Regenerated plan {plan_id}: {deletion.deleted} deleted, {created} created")
        return RegenerateSummary(deleted=deletion.deleted, failed_deletes=deletion.failed_deletes, created=created)

    def set_plan_active(self, plan_id: str, is_active: bool) -> ToggleSummary:
        plan = self.get_plan(plan_id)
        if is_active and is_expired(plan, self.today):
            raise PlanExpiredError(plan_id, plan.last_service_date)
        self.plans.update_plan(self.store, plan_id, {"isActive": is_active})
        plan = plan.model_copy(update={"is_active": is_active})

        if not is_active:
            deletion = self._delete_jobs(self._plan_jobs(plan, UPCOMING_STATUSES))
            logger.info(f"Plan {plan_id} deactivated, {deletion.deleted} upcoming job(s) removed")
            return ToggleSummary(deleted=deletion.deleted, failed_deletes=deletion.failed_deletes, is_active=False)

        client = self.get_client(plan.client_id)
        created = self._generator().create_jobs_for_service_plan(plan, client)
        logger.info(f"Plan {plan_id} activated, {created} job(s) generated")
        return ToggleSummary(created=created, is_active=True)

    # ------------------------------------------------------------------
    # Legacy additional services
    # ------------------------------------------------------------------

    def delete_additional_service(self, client_id: str, service_id: str) -> DeleteSummary:
        """Remove an additional service from the client record along with its upcoming jobs"""
        client = self.get_client(client_id)
        service = next((s for s in client.additional_services if s.id == service_id), None)
        if service is None:
            logger.warning(f"⚠️ Additional service {service_id} not found on client {client_id}")
            return DeleteSummary()

        remaining = [
            s.model_dump(by_alias=True, exclude_none=True) for s in client.additional_services if s.id != service_id
        ]
        self.clients.update_client(self.store, client_id, {"additionalServices": remaining})

        jobs = self.jobs.get_jobs_for_client(self.store, self.owner_id, client_id)
        doomed = [
            job
            for job in jobs
            if not job.plan_id and job.service_id == service.service_type and job.status in UPCOMING_STATUSES
        ]
        summary = self._delete_jobs(doomed)
        logger.info(f"✅ Removed {service.service_type} from client {client_id}, {summary.deleted} job(s) deleted")
        return summary
