"""Scheduling domain schemas - Pydantic models for stored documents and API payloads"""

import re
from datetime import date
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ...shared.dates import date_part

# Collections
CLIENTS_COLLECTION = "clients"
JOBS_COLLECTION = "jobs"
SERVICE_PLANS_COLLECTION = "servicePlans"
COMPLETED_WEEKS_COLLECTION = "completedWeeks"

# Schedule types
RECURRING = "recurring"
ONE_OFF = "one_off"

# Job status workflow: pending → in_progress → completed → accounted / paid, or cancelled
UPCOMING_STATUSES = ("pending", "scheduled", "in_progress")
REPRICEABLE_STATUSES = ("pending", "scheduled")
COMPLETED_LIKE_STATUSES = ("completed", "accounted", "paid")
JOB_STATUSES = ("pending", "scheduled", "in_progress", "completed", "cancelled", "accounted", "paid")

# Status given to last week's completed jobs by the weekly rollover
ROLLOVER_TERMINAL_STATUS = "accounted"


class CamelModel(BaseModel):
    """snake_case attributes, camelCase on the wire and in stored documents"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class DocumentModel(CamelModel):
    id: Optional[str] = None

    def to_document(self) -> dict:
        """Fields to persist (id lives in the document key, not the body)"""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"id"})


_LEADING_NUMBER_RE = re.compile(r"\s*(\d+(?:\.\d+)?)")


def _coerce_weeks(value) -> Optional[int]:
    """Tolerate "4", 4.0, "4.0", "4 weeks"; anything non-positive or unparseable is None"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        weeks = int(value)
    else:
        match = _LEADING_NUMBER_RE.match(str(value))
        if not match:
            return None
        weeks = int(float(match.group(1)))
    return weeks if weeks > 0 else None


class AdditionalService(CamelModel):
    """Legacy extra recurring service embedded on a client record"""

    id: Optional[str] = None
    service_type: str
    frequency: Optional[int] = None
    price: Optional[float] = None
    next_visit: Optional[str] = None
    is_active: bool = True

    @field_validator("frequency", mode="before")
    @classmethod
    def normalize_frequency(cls, v):
        return _coerce_weeks(v)


class Client(DocumentModel):
    owner_id: Optional[str] = None
    name: Optional[str] = None
    address: Optional[str] = None  # legacy, replaced by address1/town/postcode
    address1: Optional[str] = None
    town: Optional[str] = None
    postcode: Optional[str] = None
    account_number: Optional[Union[str, int]] = None
    round_order_number: Optional[int] = None

    # Legacy schedule fields: weeks between visits (or "one-off") and the next visit anchor
    frequency: Optional[Union[int, str]] = None
    next_visit: Optional[str] = None
    quote: Optional[float] = None

    status: Optional[str] = None  # active | ex-client
    additional_services: list[AdditionalService] = Field(default_factory=list)

    gocardless_enabled: bool = False
    gocardless_customer_id: Optional[str] = None

    @field_validator("additional_services", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return v or []

    @property
    def legacy_frequency_weeks(self) -> Optional[int]:
        if self.frequency is None or str(self.frequency).strip().lower() == "one-off":
            return None
        return _coerce_weeks(self.frequency)

    def property_details(self) -> str:
        return f"{self.address1 or self.address or ''}, {self.town or ''}, {self.postcode or ''}"


class ServicePlan(DocumentModel):
    owner_id: Optional[str] = None
    client_id: str
    service_type: str
    schedule_type: str = RECURRING

    # Recurring only
    frequency_weeks: Optional[int] = None
    start_date: Optional[str] = None
    last_service_date: Optional[str] = None  # inclusive hard stop

    # One-off only
    scheduled_date: Optional[str] = None

    price: Optional[float] = None
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    # Synthetic plan built from legacy client fields; never persisted
    is_legacy: bool = Field(default=False, exclude=True)

    @field_validator("schedule_type", mode="before")
    @classmethod
    def normalize_schedule_type(cls, v):
        normalized = str(v or RECURRING).strip().lower().replace("-", "_")
        return ONE_OFF if normalized == ONE_OFF else RECURRING

    @field_validator("frequency_weeks", mode="before")
    @classmethod
    def normalize_frequency(cls, v):
        return _coerce_weeks(v)

    @property
    def is_recurring(self) -> bool:
        return self.schedule_type == RECURRING

    @property
    def service_key(self) -> str:
        """Stable identity used in job keys: the plan id, or the service label for legacy plans"""
        if self.is_legacy or not self.id:
            return f"service:{self.service_type}"
        return self.id


class Job(DocumentModel):
    owner_id: Optional[str] = None
    client_id: str
    provider_id: Optional[str] = None
    plan_id: Optional[str] = None
    service_id: Optional[str] = None  # free-text service name shown on runsheets
    property_details: Optional[str] = None
    scheduled_time: Optional[str] = None
    # Preserved when a job is moved to another day
    original_scheduled_time: Optional[str] = None
    status: str = "pending"
    eta: Optional[str] = None
    price: Optional[float] = None
    payment_status: str = "unpaid"
    has_custom_price: bool = False
    completion_sequence: Optional[int] = None
    completed_at: Optional[str] = None
    gocardless_enabled: Optional[bool] = None
    gocardless_customer_id: Optional[str] = None
    is_deferred: Optional[bool] = None

    @property
    def scheduled_date(self) -> Optional[str]:
        return date_part(self.scheduled_time)

    @property
    def original_date(self) -> Optional[str]:
        return date_part(self.original_scheduled_time)


# ============================================================================
# RESULTS
# ============================================================================


class RolloverSummary(CamelModel):
    jobs_created: int = 0
    jobs_completed: int = 0


class DeleteSummary(CamelModel):
    deleted: int = 0
    failed_deletes: int = 0


class RegenerateSummary(DeleteSummary):
    created: int = 0


class ToggleSummary(RegenerateSummary):
    is_active: bool


class PlanUpdateResult(CamelModel):
    plan: ServicePlan
    renamed_jobs: int = 0
    repriced_jobs: int = 0
    schedule_changed: bool = False
    regeneration: Optional[RegenerateSummary] = None


class AffectedClient(CamelModel):
    client_id: str
    name: Optional[str] = None
    account_number: Optional[Union[str, int]] = None
    services_backfilled: list[str] = Field(default_factory=list)
    jobs_created: int = 0


class BackfillSummary(CamelModel):
    plans_scanned: int = 0
    clients_scanned: int = 0
    plans_backfilled: int = 0
    clients_affected: int = 0
    jobs_created: int = 0
    affected_clients: list[AffectedClient] = Field(default_factory=list)


class JobsCreatedResponse(CamelModel):
    jobs_created: int


class NextAnchorResponse(CamelModel):
    plan_id: str
    next_anchor: Optional[date] = None


class CompletedDaysResponse(CamelModel):
    week_start: date
    completed_days: list[str]


# ============================================================================
# REQUESTS
# ============================================================================


class GenerateJobsRequest(CamelModel):
    horizon_weeks: Optional[int] = Field(default=None, ge=1, le=104)
    skip_today_if_complete: bool = False


class ServicePlanCreate(CamelModel):
    service_type: str
    schedule_type: str = RECURRING
    frequency_weeks: Optional[int] = Field(default=None, ge=1, le=52)
    start_date: Optional[str] = None
    last_service_date: Optional[str] = None
    scheduled_date: Optional[str] = None
    price: float = 0
    is_active: bool = True


class PlanUpdateRequest(CamelModel):
    service_type: Optional[str] = None
    frequency_weeks: Optional[int] = Field(default=None, ge=1, le=52)
    start_date: Optional[str] = None
    last_service_date: Optional[str] = None
    scheduled_date: Optional[str] = None
    price: Optional[float] = None
    # Rebuild future jobs after a schedule change instead of leaving them in place
    regenerate: bool = False

    @field_validator("service_type", "frequency_weeks", "price")
    @classmethod
    def reject_null(cls, v, info):
        # Omit a field to leave it unchanged; only dates can be cleared
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


class ConvertLegacyRequest(CamelModel):
    service_type: Optional[str] = None
    schedule_type: str = RECURRING
    frequency_weeks: Optional[int] = Field(default=None, ge=1, le=52)
    start_date: Optional[str] = None
    price: Optional[float] = None


class PlanActiveRequest(CamelModel):
    is_active: bool


class JobStatusUpdate(CamelModel):
    status: str
    completion_sequence: Optional[int] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v not in JOB_STATUSES:
            raise ValueError(f"Invalid job status: {v}")
        return v


class MarkDayCompleteRequest(CamelModel):
    day: Optional[date] = None
