import pytest
from sqlalchemy.orm import sessionmaker

from roundbook import models  # noqa: F401
from roundbook.database import Base, build_engine
from roundbook.domain.scheduling.schemas import CLIENTS_COLLECTION, JOBS_COLLECTION, SERVICE_PLANS_COLLECTION
from roundbook.store import Filter
from roundbook.store.sql import SqlDocumentStore

OWNER = "owner-1"


def make_session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test_roundbook.db'}")
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def session_factory(tmp_path):
    return make_session_factory(tmp_path)


@pytest.fixture
def store(session_factory):
    return SqlDocumentStore(session_factory)


class Seeder:
    """Writes raw documents the way the mobile app stores them"""

    def __init__(self, store):
        self.store = store

    def client(self, client_id="client-1", owner_id=OWNER, **fields):
        data = {
            "ownerId": owner_id,
            "name": "Jane Smith",
            "address1": "1 High St",
            "town": "Bath",
            "postcode": "BA1 1AA",
            "accountNumber": "RWC001",
            "status": "active",
            "quote": 20,
            **fields,
        }
        self.store.create_document(CLIENTS_COLLECTION, data, doc_id=client_id)
        return client_id

    def plan(self, plan_id="plan-1", client_id="client-1", owner_id=OWNER, **fields):
        data = {
            "ownerId": owner_id,
            "clientId": client_id,
            "serviceType": "window-cleaning",
            "scheduleType": "recurring",
            "frequencyWeeks": 4,
            "startDate": "2024-01-01",
            "price": 30,
            "isActive": True,
            **fields,
        }
        self.store.create_document(SERVICE_PLANS_COLLECTION, data, doc_id=plan_id)
        return plan_id

    def job(self, job_id, day, client_id="client-1", owner_id=OWNER, **fields):
        data = {
            "ownerId": owner_id,
            "clientId": client_id,
            "serviceId": "window-cleaning",
            "scheduledTime": f"{day}T09:00:00",
            "status": "pending",
            "price": 30,
            "paymentStatus": "unpaid",
            **fields,
        }
        self.store.create_document(JOBS_COLLECTION, data, doc_id=job_id)
        return job_id


@pytest.fixture
def seed(store):
    return Seeder(store)


def job_dates(store, client_id="client-1", owner_id=OWNER, **match):
    """Sorted scheduled dates of a client's jobs, optionally filtered by field equality"""
    filters = [Filter("ownerId", "==", owner_id), Filter("clientId", "==", client_id)]
    filters += [Filter(field, "==", value) for field, value in match.items()]
    return sorted(doc["scheduledTime"][:10] for doc in store.query_documents(JOBS_COLLECTION, filters))


@pytest.fixture
def dates_of(store):
    def _dates_of(client_id="client-1", **match):
        return job_dates(store, client_id, **match)

    return _dates_of
