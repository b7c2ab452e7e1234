import asyncio
from datetime import date, timedelta

from roundbook.shared.dates import format_date
from roundbook.store.sql import SqlDocumentStore
from roundbook.worker import WorkerSettings, generate_jobs_for_client_task, weekly_rollover_task

OWNER = "owner-1"


def test_weekly_rollover_runs_for_every_owner(store, seed):
    seed.client("client-1", owner_id=OWNER)
    seed.client("client-2", owner_id="owner-2")
    last_week = date.today() - timedelta(days=7)
    seed.job("done", format_date(last_week), status="completed")

    totals = asyncio.run(weekly_rollover_task({"store": store}))

    assert totals["owners"] == 2
    assert totals["failed"] == 0
    assert totals["jobs_completed"] == 1
    assert store.get_document("jobs", "done")["status"] == "accounted"


def test_generate_jobs_task(store, seed):
    seed.client()
    seed.plan(startDate=format_date(date.today() + timedelta(days=7)))

    result = asyncio.run(
        generate_jobs_for_client_task({"store": store, "job_id": "abc"}, OWNER, "client-1", horizon_weeks=12)
    )

    assert result == {"client_id": "client-1", "jobs_created": 3}


def test_rollover_is_scheduled_for_monday_midnight():
    rollover = [job for job in WorkerSettings.cron_jobs if job.coroutine is weekly_rollover_task]
    assert len(rollover) == 1
    assert rollover[0].weekday in ("mon", 0)
    assert (rollover[0].hour, rollover[0].minute) == (0, 0)


class FailingOwnerStore(SqlDocumentStore):
    def _run_query(self, collection, filters):
        if collection == "jobs" and any(f.field == "ownerId" and f.value == OWNER for f in filters):
            raise RuntimeError("connection reset")
        return super()._run_query(collection, filters)


def test_rollover_skips_malformed_jobs(store, seed):
    last_week = format_date(date.today() - timedelta(days=7))
    seed.client("client-1", owner_id=OWNER)
    seed.client("client-2", owner_id="owner-2")
    seed.job("broken", last_week, status="completed", price="")
    seed.job("done-1", last_week, status="completed")
    seed.job("done-2", last_week, client_id="client-2", owner_id="owner-2", status="completed")

    totals = asyncio.run(weekly_rollover_task({"store": store}))

    assert (totals["owners"], totals["failed"], totals["jobs_completed"]) == (2, 0, 2)
    assert store.get_document("jobs", "done-1")["status"] == "accounted"
    assert store.get_document("jobs", "done-2")["status"] == "accounted"
    assert store.get_document("jobs", "broken")["status"] == "completed"


def test_rollover_continues_after_an_owner_fails(session_factory):
    store = FailingOwnerStore(session_factory)
    last_week = format_date(date.today() - timedelta(days=7))
    store.create_document("clients", {"ownerId": OWNER, "status": "active"}, doc_id="client-1")
    store.create_document("clients", {"ownerId": "owner-2", "status": "active"}, doc_id="client-2")
    store.create_document(
        "jobs",
        {"ownerId": "owner-2", "clientId": "client-2", "scheduledTime": f"{last_week}T09:00:00", "status": "completed"},
        doc_id="done-2",
    )

    totals = asyncio.run(weekly_rollover_task({"store": store}))

    assert (totals["owners"], totals["failed"]) == (1, 1)
    assert store.get_document("jobs", "done-2")["status"] == "accounted"
