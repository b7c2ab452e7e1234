"""
Job generator - turns service plans into dated job records.

Every plan (stored, or synthesized from legacy client fields) goes through the
same loop: resolve the anchor, step forward by the plan frequency up to the
horizon or last service date, drop dates already covered by an existing job,
and commit what is left as one atomic batch per plan.

Job document ids are derived from (owner, client, plan, date) and written with
create-if-absent, so concurrent or repeated runs can never double-book a slot.
"""

import hashlib
import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from ...config import (
    DEFAULT_JOB_PRICE,
    DEFAULT_PROVIDER_ID,
    GENERATION_HORIZON_WEEKS,
    ROLLOVER_LOOKAHEAD_WEEKS,
    TOP_UP_MONTHS_AHEAD,
    USE_SERVICE_PLANS_GENERATION,
)
from ...exceptions import BatchCommitError, ClientNotFoundError, DocumentNotFoundError, OwnerNotResolvedError, StoreError
from ...shared.dates import (
    DAYS_OF_WEEK,
    format_date,
    format_scheduled_time,
    parse_flexible_date,
    week_start,
    weekday_name,
)
from ...store import DocumentStore, WriteOp
from .plans import (
    deactivate_if_expired,
    job_belongs_to_plan,
    legacy_plans_for_client,
    occupied_dates,
    resolve_next_anchor,
    roll_forward,
)
from .repository import ClientRepository, CompletedWeekRepository, JobRepository, ServicePlanRepository, now_iso
from .schemas import (
    COMPLETED_LIKE_STATUSES,
    JOBS_COLLECTION,
    ROLLOVER_TERMINAL_STATUS,
    UPCOMING_STATUSES,
    AffectedClient,
    BackfillSummary,
    Client,
    Job,
    RolloverSummary,
    ServicePlan,
)

logger = logging.getLogger(__name__)


def job_document_id(owner_id: str, client_id: str, service_key: str, day: date) -> str:
    """Deterministic 20-char document id for one client/plan/date slot"""
    raw = f"{owner_id}|{client_id}|{service_key}|{format_date(day)}"
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:20]


def _weeks_until(start: date, end: date) -> int:
    return max(1, -(-(end - start).days // 7))


class JobGenerator:
    """Generates jobs for one owner account"""

    def __init__(self, store: DocumentStore, owner_id: str, today: Optional[date] = None):
        if not owner_id:
            raise OwnerNotResolvedError()
        self.store = store
        self.owner_id = owner_id
        self.today = today or date.today()
        self.clients = ClientRepository()
        self.plans = ServicePlanRepository()
        self.jobs = JobRepository()
        self.completed_weeks = CompletedWeekRepository()

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def effective_plans(self, client: Client) -> list[ServicePlan]:
        """Stored plans for the client, or plans derived from its legacy fields when it has none"""
        if USE_SERVICE_PLANS_GENERATION:
            plans = self.plans.get_plans_for_client(self.store, self.owner_id, client.id)
            if plans:
                return plans
        return legacy_plans_for_client(client)

    def _get_client(self, client_id: str) -> Client:
        client = self.clients.get_client(self.store, self.owner_id, client_id)
        if client is None:
            raise ClientNotFoundError(client_id)
        return client

    # ------------------------------------------------------------------
    # Per-client generation
    # ------------------------------------------------------------------

    def create_jobs_for_client(
        self, client_id: str, horizon_weeks: Optional[int] = None, skip_today_if_complete: bool = False
    ) -> int:
        client = self._get_client(client_id)
        plans = self.effective_plans(client)
        logger.info(f"🔄 Generating jobs for client {client_id}: {len(plans)} plan(s)")

        total = 0
        for plan in plans:
            total += self.create_jobs_for_service_plan(plan, client, horizon_weeks, skip_today_if_complete)

        logger.info(f"✅ Created {total} job(s) for client {client_id}")
        return total

    def create_jobs_for_service_plan(
        self,
        plan: ServicePlan,
        client: Client,
        horizon_weeks: Optional[int] = None,
        skip_today_if_complete: bool = False,
    ) -> int:
        horizon = horizon_weeks or GENERATION_HORIZON_WEEKS

        plan = deactivate_if_expired(self.store, plan, self.today)
        if not plan.is_active:
            return 0

        anchor = resolve_next_anchor(plan, self.today)
        if anchor is None:
            logger.info(f"Plan {plan.id} ({plan.service_type}) has no usable anchor, skipping")
            return 0

        skip_day = None
        if skip_today_if_complete and self.is_today_marked_complete():
            skip_day = self.today

        created = self.generate_from_anchor(plan, client, anchor, horizon, skip_day=skip_day)
        self._realign_anchor(plan, anchor)
        return created

    def generate_from_anchor(
        self,
        plan: ServicePlan,
        client: Client,
        anchor: date,
        horizon_weeks: int,
        skip_day: Optional[date] = None,
        existing: Optional[list[Job]] = None,
    ) -> int:
        """Stage and commit the plan's missing jobs from ``anchor`` onwards"""
        if existing is None:
            existing = self.jobs.get_jobs_for_client(self.store, self.owner_id, client.id)
        taken = occupied_dates(existing, plan)

        operations = []
        for day in self._occurrences(plan, anchor, horizon_weeks):
            slot = format_date(day)
            if slot in taken:
                continue
            if day == skip_day:
                logger.info(f"Skipping {slot} for client {client.id}: day already marked complete")
                continue
            job = self._build_job(plan, client, day)
            operations.append(
                WriteOp.create_if_absent(
                    JOBS_COLLECTION,
                    job_document_id(self.owner_id, client.id, plan.service_key, day),
                    job.to_document(),
                )
            )
            taken.add(slot)

        if not operations:
            return 0

        try:
            created = self.store.batch_write(operations)
        except BatchCommitError:
            logger.error(f"❌ Failed to commit {len(operations)} job(s) for plan {plan.id} of client {client.id}")
            raise
        logger.info(f"📊 Plan {plan.id} ({plan.service_type}): {created} job(s) created from {format_date(anchor)}")
        return created

    def _occurrences(self, plan: ServicePlan, anchor: date, horizon_weeks: int) -> list[date]:
        if not plan.is_recurring:
            return [anchor]

        last = parse_flexible_date(plan.last_service_date)
        limit = self.today + timedelta(weeks=horizon_weeks)
        step = timedelta(weeks=plan.frequency_weeks)

        days = []
        cursor = anchor
        for _ in range(horizon_weeks):
            # Last service date is a hard stop even inside the horizon
            if last is not None and cursor > last:
                break
            if cursor > limit:
                break
            days.append(cursor)
            cursor += step
        return days

    def _build_job(self, plan: ServicePlan, client: Client, day: date) -> Job:
        return Job(
            owner_id=self.owner_id,
            client_id=client.id,
            provider_id=DEFAULT_PROVIDER_ID,
            plan_id=None if plan.is_legacy else plan.id,
            service_id=plan.service_type,
            property_details=client.property_details(),
            scheduled_time=format_scheduled_time(day),
            status="pending",
            price=plan.price or client.quote or DEFAULT_JOB_PRICE,
            payment_status="unpaid",
            has_custom_price=False,
            gocardless_enabled=client.gocardless_enabled,
            gocardless_customer_id=client.gocardless_customer_id if client.gocardless_enabled else None,
        )

    def _realign_anchor(self, plan: ServicePlan, anchor: date) -> None:
        """Move a stored plan's startDate up to the anchor it was rolled forward to"""
        if plan.is_legacy or not plan.id or not plan.is_recurring:
            return
        start = parse_flexible_date(plan.start_date)
        if start is None or start >= anchor:
            return
        try:
            self.plans.update_plan(self.store, plan.id, {"startDate": format_date(anchor)})
        except StoreError as e:
            logger.warning(f"⚠️ Could not realign start date of plan {plan.id}: {e}")

    # ------------------------------------------------------------------
    # Weekly generation and rollover
    # ------------------------------------------------------------------

    def _jobs_by_client(self) -> dict[str, list[Job]]:
        grouped = defaultdict(list)
        for job in self.jobs.get_jobs(self.store, self.owner_id):
            grouped[job.client_id].append(job)
        return grouped

    @staticmethod
    def _occurrence_in_week(plan: ServicePlan, start: date, end: date) -> Optional[date]:
        if not plan.is_recurring:
            day = parse_flexible_date(plan.scheduled_date)
        else:
            anchor = parse_flexible_date(plan.start_date)
            if anchor is None or not plan.frequency_weeks:
                return None
            day = roll_forward(anchor, plan.frequency_weeks, start)
            last = parse_flexible_date(plan.last_service_date)
            if last is not None and day > last:
                return None
        if day is None or not (start <= day < end):
            return None
        return day

    def create_jobs_for_week(self, week_start_date: date) -> int:
        """One job per active client plan whose next occurrence falls inside the week"""
        start = week_start_date
        end = start + timedelta(days=7)
        clients = self.clients.get_active_clients(self.store, self.owner_id)
        jobs_by_client = self._jobs_by_client()
        logger.info(f"🔄 Generating week of {format_date(start)} for {len(clients)} active client(s)")

        operations = []
        for client in clients:
            client_jobs = jobs_by_client.get(client.id, [])
            for plan in self.effective_plans(client):
                plan = deactivate_if_expired(self.store, plan, self.today)
                if not plan.is_active:
                    continue
                day = self._occurrence_in_week(plan, start, end)
                if day is None or format_date(day) in occupied_dates(client_jobs, plan):
                    continue
                operations.append(
                    WriteOp.create_if_absent(
                        JOBS_COLLECTION,
                        job_document_id(self.owner_id, client.id, plan.service_key, day),
                        self._build_job(plan, client, day).to_document(),
                    )
                )

        created = self._commit_in_chunks(operations)
        logger.info(f"✅ Week of {format_date(start)}: {created} job(s) created")
        return created

    def handle_weekly_rollover(self) -> RolloverSummary:
        """Account last week's completed jobs and extend generation by one week"""
        current_week = week_start(self.today)
        previous_week = current_week - timedelta(days=7)

        completed = self.jobs.get_jobs_in_range(
            self.store, self.owner_id, previous_week, current_week, status="completed"
        )
        self._commit_in_chunks(
            [WriteOp.update(JOBS_COLLECTION, job.id, {"status": ROLLOVER_TERMINAL_STATUS}) for job in completed]
        )

        target_week = current_week + timedelta(weeks=ROLLOVER_LOOKAHEAD_WEEKS)
        created = self.create_jobs_for_week(target_week)

        logger.info(
            f"📊 Weekly rollover for owner {self.owner_id}: "
            f"{len(completed)} job(s) accounted, {created} job(s) created for week of {format_date(target_week)}"
        )
        return RolloverSummary(jobs_created=created, jobs_completed=len(completed))

    def _commit_in_chunks(self, operations: list[WriteOp]) -> int:
        created = 0
        size = self.store.max_batch_operations
        for index in range(0, len(operations), size):
            created += self.store.batch_write(operations[index : index + size])
        return created

    # ------------------------------------------------------------------
    # Completed days
    # ------------------------------------------------------------------

    def is_today_marked_complete(self) -> bool:
        try:
            days = self.completed_weeks.get_completed_days(self.store, self.owner_id, week_start(self.today))
        except StoreError as e:
            logger.warning(f"⚠️ Could not read completed days for owner {self.owner_id}: {e}")
            return False
        return weekday_name(self.today) in days

    def mark_day_complete(self, day: Optional[date] = None) -> list[str]:
        """Record ``day`` (default today) as closed out on the runsheet; returns the week's completed days"""
        day = day or self.today
        week = week_start(day)
        days = set(self.completed_weeks.get_completed_days(self.store, self.owner_id, week))
        days.add(weekday_name(day))
        ordered = [name for name in DAYS_OF_WEEK if name in days]
        self.completed_weeks.set_completed_days(self.store, self.owner_id, week, ordered)
        return ordered

    # ------------------------------------------------------------------
    # Top-up and backfill
    # ------------------------------------------------------------------

    def top_up_after_completion(self, job_id: str, months_ahead: Optional[int] = None) -> int:
        """
        Keep a rolling window of future jobs after a job is completed.

        The window is extended from the next upcoming job for the same plan,
        or from the completed date plus one frequency when none is left.
        """
        months = months_ahead or TOP_UP_MONTHS_AHEAD
        job = self.jobs.get_job(self.store, self.owner_id, job_id)
        if job is None:
            logger.warning(f"⚠️ Top-up skipped: job {job_id} not found")
            return 0
        completed_day = parse_flexible_date(job.scheduled_time)
        client = self.clients.get_client(self.store, self.owner_id, job.client_id)
        if completed_day is None or client is None:
            return 0

        plan = next(
            (
                p
                for p in self.effective_plans(client)
                if p.is_recurring and p.is_active and p.frequency_weeks and job_belongs_to_plan(job, p)
            ),
            None,
        )
        if plan is None:
            return 0

        existing = self.jobs.get_jobs_for_client(self.store, self.owner_id, client.id)
        upcoming = sorted(
            parse_flexible_date(j.scheduled_time)
            for j in existing
            if j.status in UPCOMING_STATUSES
            and job_belongs_to_plan(j, plan)
            and j.scheduled_date
            and j.scheduled_date > format_date(completed_day)
        )
        anchor = upcoming[0] if upcoming else completed_day + timedelta(weeks=plan.frequency_weeks)
        anchor = roll_forward(anchor, plan.frequency_weeks, self.today)

        horizon = _weeks_until(self.today, self.today + relativedelta(months=months))
        created = self.generate_from_anchor(plan, client, anchor, horizon, existing=existing)
        if created:
            logger.info(f"✅ Topped up {created} job(s) for client {client.id} after completing job {job_id}")
        return created

    def backfill_active_plans(self, months_ahead: Optional[int] = None) -> BackfillSummary:
        """Regenerate schedules for active clients that have run out of upcoming jobs"""
        months = months_ahead or TOP_UP_MONTHS_AHEAD
        horizon = _weeks_until(self.today, self.today + relativedelta(months=months))
        today_str = format_date(self.today)
        summary = BackfillSummary()

        jobs_by_client = self._jobs_by_client()
        for client in self.clients.get_active_clients(self.store, self.owner_id):
            summary.clients_scanned += 1
            client_jobs = jobs_by_client.get(client.id, [])
            if any(j.status in UPCOMING_STATUSES and (j.scheduled_date or "") >= today_str for j in client_jobs):
                continue

            affected = AffectedClient(client_id=client.id, name=client.name, account_number=client.account_number)
            for plan in self.effective_plans(client):
                plan = deactivate_if_expired(self.store, plan, self.today)
                if not plan.is_active or not plan.is_recurring or not plan.frequency_weeks:
                    continue
                summary.plans_scanned += 1

                anchor = self._backfill_anchor(plan, client_jobs)
                if anchor is None:
                    continue
                created = self.generate_from_anchor(plan, client, anchor, horizon, existing=client_jobs)
                if created:
                    summary.plans_backfilled += 1
                    affected.services_backfilled.append(plan.service_type)
                    affected.jobs_created += created

            if affected.jobs_created:
                summary.clients_affected += 1
                summary.jobs_created += affected.jobs_created
                summary.affected_clients.append(affected)

        logger.info(
            f"📊 Backfill for owner {self.owner_id}: {summary.jobs_created} job(s) across "
            f"{summary.clients_affected} client(s), {summary.plans_scanned} plan(s) scanned"
        )
        return summary

    def _backfill_anchor(self, plan: ServicePlan, client_jobs: list[Job]) -> Optional[date]:
        """Last completed (else last past) job for the plan plus one frequency, rolled past today"""
        today_str = format_date(self.today)
        plan_jobs = [j for j in client_jobs if j.scheduled_date and job_belongs_to_plan(j, plan)]
        completed = [j.scheduled_date for j in plan_jobs if j.status in COMPLETED_LIKE_STATUSES]
        past = [j.scheduled_date for j in plan_jobs if j.scheduled_date < today_str]

        base = max(completed or past, default=None)
        if base is None:
            return resolve_next_anchor(plan, self.today)
        anchor = parse_flexible_date(base) + timedelta(weeks=plan.frequency_weeks)
        return roll_forward(anchor, plan.frequency_weeks, self.today)

    # ------------------------------------------------------------------
    # Job status
    # ------------------------------------------------------------------

    def update_job_status(self, job_id: str, status: str, completion_sequence: Optional[int] = None) -> Job:
        job = self.jobs.get_job(self.store, self.owner_id, job_id)
        if job is None:
            raise DocumentNotFoundError(JOBS_COLLECTION, job_id)

        updates = {"status": status}
        if status == "completed":
            updates["completedAt"] = now_iso()
            if completion_sequence is not None:
                updates["completionSequence"] = completion_sequence
        elif job.status == "completed":
            # Undo: completion data no longer applies
            updates["completedAt"] = None
            updates["completionSequence"] = None
        self.jobs.update_job(self.store, job_id, updates)

        if status == "completed" and job.status != "completed":
            try:
                self.top_up_after_completion(job_id)
            except StoreError as e:
                logger.warning(f"⚠️ Top-up after completing job {job_id} failed: {e}")

        return self.jobs.get_job(self.store, self.owner_id, job_id)
