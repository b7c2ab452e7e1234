"""Scheduling router - FastAPI endpoints for job generation and service plans"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ...auth import get_current_owner
from ...exceptions import (
    ClientNotFoundError,
    DocumentExistsError,
    DocumentNotFoundError,
    OwnerNotResolvedError,
    PlanExpiredError,
    PlanNotFoundError,
    RoundbookError,
    ScheduleRegenerationError,
)
from ...shared.dates import week_start
from ...store import DocumentStore, get_store
from .generator import JobGenerator
from .mutations import ScheduleMutationService
from .plans import deactivate_if_expired, resolve_next_anchor
from .repository import CompletedWeekRepository
from .schemas import (
    BackfillSummary,
    CompletedDaysResponse,
    ConvertLegacyRequest,
    DeleteSummary,
    GenerateJobsRequest,
    Job,
    JobsCreatedResponse,
    JobStatusUpdate,
    MarkDayCompleteRequest,
    NextAnchorResponse,
    PlanActiveRequest,
    PlanUpdateRequest,
    PlanUpdateResult,
    RegenerateSummary,
    RolloverSummary,
    ServicePlan,
    ServicePlanCreate,
    ToggleSummary,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduling", tags=["Scheduling"])


def get_job_generator(
    owner_id: str = Depends(get_current_owner),
    store: DocumentStore = Depends(get_store),
) -> JobGenerator:
    """Dependency injection for JobGenerator"""
    return JobGenerator(store, owner_id)


def get_mutation_service(
    owner_id: str = Depends(get_current_owner),
    store: DocumentStore = Depends(get_store),
) -> ScheduleMutationService:
    """Dependency injection for ScheduleMutationService"""
    return ScheduleMutationService(store, owner_id)


def _raise_http(e: RoundbookError):
    if isinstance(e, OwnerNotResolvedError):
        raise HTTPException(status_code=401, detail=str(e)) from e
    if isinstance(e, (ClientNotFoundError, PlanNotFoundError, DocumentNotFoundError)):
        raise HTTPException(status_code=404, detail=str(e)) from e
    if isinstance(e, (DocumentExistsError, PlanExpiredError)):
        raise HTTPException(status_code=409, detail=str(e)) from e
    if isinstance(e, ScheduleRegenerationError):
        raise HTTPException(status_code=500, detail={"message": str(e), "deleted": e.deleted}) from e
    logger.error(f"❌ Scheduling operation failed: {str(e)}")
    raise HTTPException(status_code=500, detail=str(e)) from e


# ============================================================================
# JOB GENERATION
# ============================================================================


@router.post("/clients/{client_id}/jobs/generate", response_model=JobsCreatedResponse)
async def generate_client_jobs(
    client_id: str,
    data: GenerateJobsRequest = GenerateJobsRequest(),
    generator: JobGenerator = Depends(get_job_generator),
):
    """Generate missing jobs for every plan of a client"""
    try:
        created = generator.create_jobs_for_client(client_id, data.horizon_weeks, data.skip_today_if_complete)
    except RoundbookError as e:
        _raise_http(e)
    return JobsCreatedResponse(jobs_created=created)


@router.post("/plans/{plan_id}/jobs/generate", response_model=JobsCreatedResponse)
async def generate_plan_jobs(
    plan_id: str,
    data: GenerateJobsRequest = GenerateJobsRequest(),
    service: ScheduleMutationService = Depends(get_mutation_service),
    generator: JobGenerator = Depends(get_job_generator),
):
    try:
        plan = service.get_plan(plan_id)
        client = service.get_client(plan.client_id)
        created = generator.create_jobs_for_service_plan(plan, client, data.horizon_weeks, data.skip_today_if_complete)
    except RoundbookError as e:
        _raise_http(e)
    return JobsCreatedResponse(jobs_created=created)


@router.post("/weeks/{week_start_date}/jobs/generate", response_model=JobsCreatedResponse)
async def generate_week_jobs(week_start_date: date, generator: JobGenerator = Depends(get_job_generator)):
    try:
        created = generator.create_jobs_for_week(week_start_date)
    except RoundbookError as e:
        _raise_http(e)
    return JobsCreatedResponse(jobs_created=created)


@router.post("/rollover", response_model=RolloverSummary)
async def run_weekly_rollover(generator: JobGenerator = Depends(get_job_generator)):
    """Run the Monday rollover now for the current owner"""
    try:
        return generator.handle_weekly_rollover()
    except RoundbookError as e:
        _raise_http(e)


@router.post("/backfill", response_model=BackfillSummary)
async def backfill_plans(
    months_ahead: Optional[int] = Query(None, ge=1, le=36),
    generator: JobGenerator = Depends(get_job_generator),
):
    """Regenerate schedules for active clients with no upcoming jobs"""
    try:
        return generator.backfill_active_plans(months_ahead)
    except RoundbookError as e:
        _raise_http(e)


@router.patch("/jobs/{job_id}/status", response_model=Job)
async def update_job_status(
    job_id: str,
    data: JobStatusUpdate,
    generator: JobGenerator = Depends(get_job_generator),
):
    try:
        return generator.update_job_status(job_id, data.status, data.completion_sequence)
    except RoundbookError as e:
        _raise_http(e)


# ============================================================================
# COMPLETED DAYS
# ============================================================================


@router.get("/completed-days", response_model=CompletedDaysResponse)
async def get_completed_days(
    day: Optional[date] = Query(None),
    owner_id: str = Depends(get_current_owner),
    store: DocumentStore = Depends(get_store),
):
    start = week_start(day or date.today())
    try:
        days = CompletedWeekRepository.get_completed_days(store, owner_id, start)
    except RoundbookError as e:
        _raise_http(e)
    return CompletedDaysResponse(week_start=start, completed_days=days)


@router.post("/completed-days", response_model=CompletedDaysResponse)
async def mark_day_complete(
    data: MarkDayCompleteRequest = MarkDayCompleteRequest(),
    generator: JobGenerator = Depends(get_job_generator),
):
    day = data.day or generator.today
    try:
        days = generator.mark_day_complete(day)
    except RoundbookError as e:
        _raise_http(e)
    return CompletedDaysResponse(week_start=week_start(day), completed_days=days)


# ============================================================================
# SERVICE PLANS
# ============================================================================


@router.get("/clients/{client_id}/plans", response_model=list[ServicePlan])
async def list_plans(client_id: str, service: ScheduleMutationService = Depends(get_mutation_service)):
    try:
        return service.list_plans(client_id)
    except RoundbookError as e:
        _raise_http(e)


@router.post("/clients/{client_id}/plans", response_model=ServicePlan, status_code=201)
async def create_plan(
    client_id: str,
    data: ServicePlanCreate,
    service: ScheduleMutationService = Depends(get_mutation_service),
):
    try:
        return service.create_plan(client_id, data)
    except RoundbookError as e:
        _raise_http(e)


@router.post("/clients/{client_id}/plans/convert-legacy", response_model=ServicePlan, status_code=201)
async def convert_legacy(
    client_id: str,
    data: ConvertLegacyRequest = ConvertLegacyRequest(),
    service: ScheduleMutationService = Depends(get_mutation_service),
):
    """Turn the client's legacy frequency/next visit into a stored service plan"""
    try:
        return service.convert_legacy(client_id, data)
    except RoundbookError as e:
        _raise_http(e)


@router.delete("/clients/{client_id}/additional-services/{service_id}", response_model=DeleteSummary)
async def delete_additional_service(
    client_id: str,
    service_id: str,
    service: ScheduleMutationService = Depends(get_mutation_service),
):
    try:
        return service.delete_additional_service(client_id, service_id)
    except RoundbookError as e:
        _raise_http(e)


@router.get("/plans/{plan_id}/next-anchor", response_model=NextAnchorResponse)
async def get_next_anchor(plan_id: str, service: ScheduleMutationService = Depends(get_mutation_service)):
    try:
        plan = service.get_plan(plan_id)
    except RoundbookError as e:
        _raise_http(e)
    return NextAnchorResponse(plan_id=plan_id, next_anchor=resolve_next_anchor(plan, service.today))


@router.patch("/plans/{plan_id}", response_model=PlanUpdateResult)
async def update_plan(
    plan_id: str,
    data: PlanUpdateRequest,
    service: ScheduleMutationService = Depends(get_mutation_service),
):
    """
    Edit a plan. Renames and price changes flow to existing jobs; schedule
    changes only rebuild jobs when ``regenerate`` is set.
    """
    updates = data.model_dump(exclude_unset=True, exclude={"regenerate"})
    try:
        return service.update_plan(plan_id, updates, regenerate=data.regenerate)
    except RoundbookError as e:
        _raise_http(e)


@router.post("/plans/{plan_id}/regenerate", response_model=RegenerateSummary)
async def regenerate_plan(plan_id: str, service: ScheduleMutationService = Depends(get_mutation_service)):
    try:
        return service.regenerate_plan(plan_id)
    except RoundbookError as e:
        _raise_http(e)


@router.put("/plans/{plan_id}/active", response_model=ToggleSummary)
async def set_plan_active(
    plan_id: str,
    data: PlanActiveRequest,
    service: ScheduleMutationService = Depends(get_mutation_service),
):
    try:
        return service.set_plan_active(plan_id, data.is_active)
    except RoundbookError as e:
        _raise_http(e)


@router.post("/plans/{plan_id}/deactivate-if-expired", response_model=ServicePlan)
async def deactivate_expired_plan(plan_id: str, service: ScheduleMutationService = Depends(get_mutation_service)):
    """Mark the plan inactive if its last service date has passed"""
    try:
        return deactivate_if_expired(service.store, service.get_plan(plan_id), service.today)
    except RoundbookError as e:
        _raise_http(e)
