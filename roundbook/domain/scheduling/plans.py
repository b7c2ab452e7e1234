"""
Service plan resolution.

Works out where a plan's next occurrence falls, when a plan has run past its
last service date, and how legacy client schedule fields map onto plans so
the generator only ever deals with one representation.
"""

import logging
from datetime import date, timedelta
from typing import Optional

from ...config import DEFAULT_JOB_PRICE, LEGACY_SERVICE_ID
from ...exceptions import OwnerNotResolvedError
from ...shared.dates import format_date, parse_flexible_date
from ...store import DocumentStore
from .repository import ServicePlanRepository
from .schemas import ONE_OFF, RECURRING, Client, Job, ServicePlan

logger = logging.getLogger(__name__)


def roll_forward(anchor: date, frequency_weeks: int, not_before: date) -> date:
    """Smallest ``anchor + k * frequency`` (k >= 0) that is on or after ``not_before``"""
    if anchor >= not_before:
        return anchor
    step_days = 7 * frequency_weeks
    periods = -(-(not_before - anchor).days // step_days)
    return anchor + timedelta(days=periods * step_days)


def resolve_next_anchor(plan: ServicePlan, today: Optional[date] = None) -> Optional[date]:
    """
    Next date to generate from, never in the past for recurring plans.

    One-off plans return their scheduled date as-is (no rollover). Plans
    missing the fields their schedule type needs resolve to None.
    """
    today = today or date.today()

    if plan.schedule_type == ONE_OFF:
        return parse_flexible_date(plan.scheduled_date)

    if not plan.frequency_weeks:
        return None
    start = parse_flexible_date(plan.start_date)
    if start is None:
        return None
    return roll_forward(start, plan.frequency_weeks, today)


def is_expired(plan: ServicePlan, today: Optional[date] = None) -> bool:
    last = parse_flexible_date(plan.last_service_date)
    return last is not None and last < (today or date.today())


def deactivate_if_expired(store: DocumentStore, plan: ServicePlan, today: Optional[date] = None) -> ServicePlan:
    """Persist isActive=false for an active plan past its last service date; no-op otherwise"""
    if plan.is_legacy or not plan.id:
        return plan
    if not plan.is_active or not is_expired(plan, today):
        return plan

    ServicePlanRepository.update_plan(store, plan.id, {"isActive": False})
    logger.info(f"✅ Service plan {plan.id} deactivated: last service date {plan.last_service_date} has passed")
    return plan.model_copy(update={"is_active": False})


def deactivate_plan_if_expired(
    store: DocumentStore, owner_id: str, plan_id: str, today: Optional[date] = None
) -> Optional[ServicePlan]:
    if not owner_id:
        raise OwnerNotResolvedError()
    plan = ServicePlanRepository.get_plan(store, owner_id, plan_id)
    if plan is None:
        return None
    return deactivate_if_expired(store, plan, today)


def job_belongs_to_plan(job: Job, plan: ServicePlan) -> bool:
    """
    Jobs created from a stored plan carry its id. Older jobs (and jobs from
    legacy schedules) only carry the service name, so they match on that.
    """
    if job.plan_id:
        return not plan.is_legacy and job.plan_id == plan.id
    return (job.service_id or LEGACY_SERVICE_ID) == plan.service_type


def occupied_dates(jobs: list[Job], plan: ServicePlan) -> set[str]:
    """Dates already covered for a plan, counting both current and original job dates"""
    days = set()
    for job in jobs:
        if not job.scheduled_date or not job_belongs_to_plan(job, plan):
            continue
        days.add(job.scheduled_date)
        if job.original_date:
            days.add(job.original_date)
    return days


def legacy_plans_for_client(client: Client) -> list[ServicePlan]:
    """Synthetic plans for the base service and each active additional service"""
    plans = []

    frequency = client.legacy_frequency_weeks
    if frequency and client.next_visit:
        plans.append(
            ServicePlan(
                id=f"legacy-{LEGACY_SERVICE_ID}",
                owner_id=client.owner_id,
                client_id=client.id,
                service_type=LEGACY_SERVICE_ID,
                schedule_type=RECURRING,
                frequency_weeks=frequency,
                start_date=client.next_visit,
                price=client.quote,
                is_active=True,
                is_legacy=True,
            )
        )

    for service in client.additional_services:
        if not service.is_active or not service.frequency or not service.next_visit:
            continue
        plans.append(
            ServicePlan(
                id=f"legacy-additional-{service.id or service.service_type}",
                owner_id=client.owner_id,
                client_id=client.id,
                service_type=service.service_type,
                schedule_type=RECURRING,
                frequency_weeks=service.frequency,
                start_date=service.next_visit,
                price=service.price,
                is_active=True,
                is_legacy=True,
            )
        )

    return plans


def convert_legacy_to_plan(
    store: DocumentStore,
    owner_id: str,
    client: Client,
    service_type: Optional[str] = None,
    schedule_type: str = RECURRING,
    frequency_weeks: Optional[int] = None,
    start_date: Optional[str] = None,
    price: Optional[float] = None,
    today: Optional[date] = None,
) -> ServicePlan:
    """Persist a real service plan from a client's legacy schedule fields"""
    if not owner_id:
        raise OwnerNotResolvedError()
    today = today or date.today()
    first_date = start_date or client.next_visit or format_date(today)

    plan = ServicePlan(
        client_id=client.id,
        service_type=service_type or LEGACY_SERVICE_ID,
        schedule_type=schedule_type,
        price=price if price is not None else (client.quote or DEFAULT_JOB_PRICE),
        is_active=True,
    )
    if plan.is_recurring:
        plan.frequency_weeks = frequency_weeks or client.legacy_frequency_weeks or 4
        plan.start_date = first_date
    else:
        plan.scheduled_date = first_date

    created = ServicePlanRepository.create_plan(store, owner_id, plan)
    logger.info(f"✅ Converted legacy {created.service_type} schedule for client {client.id} to plan {created.id}")
    return created
