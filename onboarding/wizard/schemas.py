"""
schemas.py — Wizard Pydantic v2 data contracts.

Defines:
  - Session               (the central value object — cached locally and mirrored server-side)
  - ProcessingResult      (opaque scoring output, only score/error are read)
  - Reservation           (pre-registration payment claim, owned by the payment collaborator)
  - BootstrapContext / BootstrapResult / StepResult / Notice  (host-facing results)
  - ErrorDetail, ErrorBody, ErrorResponse  (cross-cutting error envelope)

Wire format is camelCase (sessionId, completedSteps, ...) so the cached
document has the same shape the host UI reads; Python code uses snake_case.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from onboarding.wizard.catalog import FIRST_STEP_KEY, STEP_KEYS, in_catalog_order


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """JSON-safe dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Session — central value object
# ---------------------------------------------------------------------------

class Session(CamelModel):
    """
    Accumulated progress of one registrant through the wizard.

    current_step_key is advisory only: the step a user lands on is always
    recomputed by the resolver from completed_steps + processing state.
    completed_steps is kept de-duplicated and in catalog order.
    """
    session_id: str
    founder_id: Optional[str] = None
    current_step_key: str = FIRST_STEP_KEY
    completed_steps: List[str] = Field(default_factory=list)
    step_data: dict[str, dict[str, Any]] = Field(default_factory=dict)
    is_complete: bool = False
    last_updated: datetime = Field(default_factory=utcnow)

    @field_validator("session_id")
    @classmethod
    def _session_id_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("sessionId must not be empty")
        return value

    @field_validator("completed_steps", mode="before")
    @classmethod
    def _normalize_completed(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise ValueError("completedSteps must be a list of step keys")
        return in_catalog_order(value)

    @field_validator("current_step_key", mode="before")
    @classmethod
    def _known_current_step(cls, value: Any) -> str:
        return value if value in STEP_KEYS else FIRST_STEP_KEY

    @model_validator(mode="after")
    def _complete_means_all_steps(self) -> "Session":
        if self.is_complete and len(self.completed_steps) != len(STEP_KEYS):
            raise ValueError("A complete session must have every step completed")
        return self

    def to_document(self) -> str:
        """Serialize for the local cache slot (whole document, camelCase)."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_document(cls, raw: str | bytes) -> "Session":
        """Parse a cached document. Raises pydantic.ValidationError when malformed."""
        return cls.model_validate_json(raw)


# ---------------------------------------------------------------------------
# Collaborator shapes
# ---------------------------------------------------------------------------

class ProcessingResult(CamelModel):
    score: float = 0
    has_error: bool = False


class ReservationStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    claimed = "claimed"


class Reservation(CamelModel):
    """Pre-registration payment claim keyed by email. Not owned by this service."""
    token: str
    email: str
    status: ReservationStatus
    founder_id: Optional[str] = None
    expires_at: Optional[datetime] = None

    def is_claimable(self, now: Optional[datetime] = None) -> bool:
        """Paid, not yet bound to a founder, and not past its expiry."""
        if self.status != ReservationStatus.completed or self.founder_id:
            return False
        if self.expires_at is not None and self.expires_at < (now or utcnow()):
            return False
        return True


# ---------------------------------------------------------------------------
# Host-facing results
# ---------------------------------------------------------------------------

class BootstrapMode(str, Enum):
    resumed = "resumed"
    claim_reservation = "claimReservation"
    fresh = "fresh"
    expired = "expired"


class Notice(CamelModel):
    """A degradation the host should show the user (e.g. expired resume link)."""
    kind: str
    message: str


class ReservationClaim(CamelModel):
    token: str
    email: str


class BootstrapContext(CamelModel):
    client_id: str
    resume_token: Optional[str] = None


class BootstrapResult(CamelModel):
    """
    Outcome of bootstrap() and resume_by_email().

    session is None only for an email resume that resolved to a reservation
    claim, since that path never creates a session.
    """
    step_index: int
    session: Optional[Session]
    mode: BootstrapMode
    notices: List[Notice] = Field(default_factory=list)
    reservation: Optional[ReservationClaim] = None


class StepResult(CamelModel):
    step_index: int
    session: Session
    notices: List[Notice] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class BootstrapRequest(CamelModel):
    resume_token: Optional[str] = None


class ResumeByEmailRequest(CamelModel):
    email: str = Field(..., min_length=3, max_length=320)


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    field: Optional[str] = None
    issue: str


class ErrorBody(BaseModel):
    code: str
    message: str
    details: List[ErrorDetail] = []


class ErrorResponse(BaseModel):
    error: ErrorBody
