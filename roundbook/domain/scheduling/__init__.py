"""
Scheduling Domain

Recurring job generation and schedule reconciliation for a service round.

Layers:
- plans.py: anchor resolution, plan expiry, legacy client fields as plans
- generator.py: JobGenerator (per client, per plan, per week, weekly rollover)
- mutations.py: ScheduleMutationService (rename, re-price, regenerate, toggle)
- router.py: HTTP endpoints

The functions below are the entry points used by calling code. Each one
needs a resolved owner account and raises OwnerNotResolvedError otherwise.
"""

from datetime import date
from typing import Optional

from ...store import DocumentStore
from .generator import JobGenerator
from .plans import deactivate_plan_if_expired, resolve_next_anchor
from .schemas import Client, RolloverSummary, ServicePlan


def create_jobs_for_client(
    store: DocumentStore,
    owner_id: str,
    client_id: str,
    horizon_weeks: Optional[int] = None,
    skip_today_if_complete: bool = False,
    today: Optional[date] = None,
) -> int:
    return JobGenerator(store, owner_id, today).create_jobs_for_client(client_id, horizon_weeks, skip_today_if_complete)


def create_jobs_for_service_plan(
    store: DocumentStore,
    owner_id: str,
    plan: ServicePlan,
    client: Client,
    horizon_weeks: Optional[int] = None,
    today: Optional[date] = None,
) -> int:
    return JobGenerator(store, owner_id, today).create_jobs_for_service_plan(plan, client, horizon_weeks)


def create_jobs_for_week(store: DocumentStore, owner_id: str, week_start: date, today: Optional[date] = None) -> int:
    return JobGenerator(store, owner_id, today).create_jobs_for_week(week_start)


def handle_weekly_rollover(store: DocumentStore, owner_id: str, today: Optional[date] = None) -> RolloverSummary:
    return JobGenerator(store, owner_id, today).handle_weekly_rollover()


__all__ = [
    "JobGenerator",
    "create_jobs_for_client",
    "create_jobs_for_service_plan",
    "create_jobs_for_week",
    "deactivate_plan_if_expired",
    "handle_weekly_rollover",
    "resolve_next_anchor",
]
