"""
store.py — Data access facade for onboarding sessions, founders and reservations.

Provides a consistent, high-level API for the authoritative server records.
The wizard core never touches SQLAlchemy directly: it talks to
SqlSessionBackend (bottom of this module), which wraps these functions and
translates database failures into TransientIOError.

Design principles:
  - All functions are async and accept an AsyncSession parameter
  - No raw SQL: ORM-only queries
  - Functions only flush(); SqlSessionBackend commits after each write so the
    server record is durable before the wizard reports a step as saved
  - The reservation claim runs in a SAVEPOINT: its failure never poisons the
    surrounding transaction
  - Logs only session_id / founder_id — never emails or step field values
  - Returns domain Pydantic objects (not ORM instances) so callers are persistence-agnostic
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.config import settings
from onboarding.models.founder import FounderORM
from onboarding.models.reservation import ReservationORM
from onboarding.models.session import OnboardingSessionORM
from onboarding.wizard.catalog import (
    ANALYSIS_STEP_KEY,
    FIRST_STEP_KEY,
    STEP_KEYS,
    in_catalog_order,
    is_step_key,
)
from onboarding.wizard.errors import (
    InvalidStepKey,
    SessionExpiredOrInvalid,
    SessionNotFound,
    TransientIOError,
)
from onboarding.wizard.merge import merge_step_entry
from onboarding.wizard.resolver import extract_processing_result
from onboarding.wizard.schemas import (
    ProcessingResult,
    Reservation,
    ReservationStatus,
    Session,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_session(orm: OnboardingSessionORM) -> Session:
    return Session(
        session_id=orm.id,
        founder_id=orm.founder_id,
        current_step_key=orm.current_step,
        completed_steps=orm.completed_steps or [],
        step_data=orm.step_data or {},
        is_complete=orm.is_complete,
        last_updated=orm.updated_at,
    )


def _reservation_expiry(orm: ReservationORM) -> Optional[datetime]:
    """Explicit expiry, else created_at + settings.reservation_expiry_days."""
    if orm.expires_at is not None:
        return orm.expires_at
    if orm.created_at is None:
        return None
    return orm.created_at + timedelta(days=settings.reservation_expiry_days)


def _to_reservation(orm: ReservationORM) -> Reservation:
    return Reservation(
        token=orm.token,
        email=orm.email,
        status=ReservationStatus(orm.status),
        founder_id=orm.claimed_by_founder_id,
        expires_at=_reservation_expiry(orm),
    )


async def _load_session_row(db: AsyncSession, session_id: str) -> Optional[OnboardingSessionORM]:
    result = await db.execute(
        select(OnboardingSessionORM).where(OnboardingSessionORM.id == session_id)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Session operations
# ---------------------------------------------------------------------------

async def create_session(db: AsyncSession) -> Session:
    """Insert a fresh session record at the first step."""
    now = _now()
    orm = OnboardingSessionORM(
        id=str(uuid.uuid4()),
        current_step=FIRST_STEP_KEY,
        completed_steps=[],
        step_data={},
        is_complete=False,
        created_at=now,
        updated_at=now,
    )
    db.add(orm)
    await db.flush()
    logger.info("Created onboarding session session_id=%s", orm.id)
    return _to_session(orm)


async def get_session(db: AsyncSession, session_id: str) -> Optional[Session]:
    """Retrieve a session by id. Returns None if not found."""
    orm = await _load_session_row(db, session_id)
    if orm is None:
        return None
    return _to_session(orm)


async def find_session_by_identity(db: AsyncSession, email: str) -> Optional[Session]:
    """
    Most recently created session bound to the founder with this email.
    Returns None when the email has no founder or the founder has no session.
    """
    founder = await get_founder_by_email(db, email)
    if founder is None:
        return None
    result = await db.execute(
        select(OnboardingSessionORM)
        .where(OnboardingSessionORM.founder_id == founder.id)
        .order_by(OnboardingSessionORM.created_at.desc())
        .limit(1)
    )
    orm = result.scalar_one_or_none()
    if orm is None:
        return None
    return _to_session(orm)


async def persist_step_update(
    db: AsyncSession,
    session_id: str,
    step_key: str,
    partial: Mapping[str, Any],
) -> Session:
    """
    Durable merge of one step's data — same rules as the wizard's MergeEngine.

    Persisting the founder step also binds the session to a founder identity
    (get-or-create by email).

    Raises:
        InvalidStepKey: step_key is not in the catalog.
        SessionNotFound: no session with session_id.
        SessionExpiredOrInvalid: the session is already complete.
    """
    if not is_step_key(step_key):
        raise InvalidStepKey(step_key)
    orm = await _load_session_row(db, session_id)
    if orm is None:
        raise SessionNotFound(f"Session '{session_id}' not found")
    if orm.is_complete:
        raise SessionExpiredOrInvalid(f"Session '{session_id}' is already complete")

    step_data = dict(orm.step_data or {})
    step_data[step_key] = merge_step_entry(step_data.get(step_key), partial)
    orm.step_data = step_data  # reassign so SQLAlchemy marks the JSONB column dirty
    orm.completed_steps = in_catalog_order([*(orm.completed_steps or []), step_key])
    orm.current_step = step_key

    if step_key == FIRST_STEP_KEY:
        email = step_data[step_key].get("email")
        if isinstance(email, str) and email.strip():
            founder = await get_or_create_founder(db, email)
            orm.founder_id = founder.id

    orm.updated_at = _now()
    await db.flush()
    logger.info("Persisted step session_id=%s step=%s", session_id, step_key)
    return _to_session(orm)


async def mark_complete(db: AsyncSession, session_id: str) -> Session:
    """
    Finalize a session. Idempotent: completing a completed session is a no-op.

    Raises:
        SessionNotFound: no session with session_id.
    """
    orm = await _load_session_row(db, session_id)
    if orm is None:
        raise SessionNotFound(f"Session '{session_id}' not found")
    if not orm.is_complete:
        orm.completed_steps = list(STEP_KEYS)
        orm.current_step = ANALYSIS_STEP_KEY
        orm.is_complete = True
        orm.updated_at = _now()
        await db.flush()
        logger.info("Marked session complete session_id=%s", session_id)
    return _to_session(orm)


async def get_processing_result(db: AsyncSession, session_id: str) -> Optional[ProcessingResult]:
    """Scoring outcome recorded in the session's processing step, or None."""
    orm = await _load_session_row(db, session_id)
    if orm is None:
        return None
    return extract_processing_result(orm.step_data)


# ---------------------------------------------------------------------------
# Founder operations
# ---------------------------------------------------------------------------

async def get_founder_by_email(db: AsyncSession, email: str) -> Optional[FounderORM]:
    result = await db.execute(
        select(FounderORM).where(FounderORM.email == email.strip().lower())
    )
    return result.scalar_one_or_none()


async def get_or_create_founder(db: AsyncSession, email: str) -> FounderORM:
    """Reuse the founder registered under this email, or create one."""
    founder = await get_founder_by_email(db, email)
    if founder is not None:
        return founder
    founder = FounderORM(id=str(uuid.uuid4()), email=email.strip().lower(), created_at=_now())
    db.add(founder)
    await db.flush()
    logger.info("Created founder founder_id=%s", founder.id)
    return founder


# ---------------------------------------------------------------------------
# Reservation operations
# ---------------------------------------------------------------------------

async def find_reservation(db: AsyncSession, token: str) -> Optional[Reservation]:
    result = await db.execute(
        select(ReservationORM).where(ReservationORM.token == token)
    )
    orm = result.scalar_one_or_none()
    if orm is None:
        return None
    return _to_reservation(orm)


async def find_reservation_by_email(db: AsyncSession, email: str) -> Optional[Reservation]:
    """Most recent paid (status 'completed') reservation for the email, or None."""
    result = await db.execute(
        select(ReservationORM)
        .where(
            ReservationORM.email == email.strip().lower(),
            ReservationORM.status == ReservationStatus.completed.value,
        )
        .order_by(ReservationORM.created_at.desc())
        .limit(1)
    )
    orm = result.scalar_one_or_none()
    if orm is None:
        return None
    return _to_reservation(orm)


async def claim_reservation(db: AsyncSession, token: str, founder_id: str) -> bool:
    """
    Bind a paid reservation to a founder.

    Returns True when the reservation is (now, or already) claimed by this
    founder; False when it is missing, unpaid, expired or claimed by someone else.
    """
    async with db.begin_nested():
        result = await db.execute(
            select(ReservationORM).where(ReservationORM.token == token)
        )
        orm = result.scalar_one_or_none()
        if orm is None:
            return False
        if orm.claimed_by_founder_id is not None:
            return orm.claimed_by_founder_id == founder_id
        if orm.status != ReservationStatus.completed.value:
            return False
        now = _now()
        expires_at = _reservation_expiry(orm)
        if expires_at is not None and expires_at < now:
            return False

        orm.claimed_by_founder_id = founder_id
        orm.claimed_at = now
        orm.status = ReservationStatus.claimed.value
        await db.flush()
    logger.info("Claimed reservation founder_id=%s", founder_id)
    return True


# ---------------------------------------------------------------------------
# SessionBackend adapter for the wizard core
# ---------------------------------------------------------------------------

@contextmanager
def _translate_db_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Database error during %s: %s", operation, type(exc).__name__)
        raise TransientIOError(f"Database unavailable during {operation}") from exc


class SqlSessionBackend:
    """
    SessionBackend backed by PostgreSQL, bound to one request's AsyncSession.

    Writes commit before returning, so a commit failure surfaces as
    TransientIOError from the operation that caused it.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create_session(self) -> Session:
        with _translate_db_errors("create_session"):
            session = await create_session(self.db)
            await self.db.commit()
            return session

    async def get_session(self, session_id: str) -> Optional[Session]:
        with _translate_db_errors("get_session"):
            return await get_session(self.db, session_id)

    async def find_session_by_identity(self, email: str) -> Optional[Session]:
        with _translate_db_errors("find_session_by_identity"):
            return await find_session_by_identity(self.db, email)

    async def find_reservation(self, token: str) -> Optional[Reservation]:
        with _translate_db_errors("find_reservation"):
            return await find_reservation(self.db, token)

    async def find_reservation_by_email(self, email: str) -> Optional[Reservation]:
        with _translate_db_errors("find_reservation_by_email"):
            return await find_reservation_by_email(self.db, email)

    async def persist_step_update(
        self, session_id: str, step_key: str, partial: Mapping[str, Any]
    ) -> Session:
        with _translate_db_errors("persist_step_update"):
            session = await persist_step_update(self.db, session_id, step_key, partial)
            await self.db.commit()
            return session

    async def get_processing_result(self, session_id: str) -> Optional[ProcessingResult]:
        with _translate_db_errors("get_processing_result"):
            return await get_processing_result(self.db, session_id)

    async def mark_complete(self, session_id: str) -> Session:
        with _translate_db_errors("mark_complete"):
            session = await mark_complete(self.db, session_id)
            await self.db.commit()
            return session

    async def claim_reservation(self, token: str, founder_id: str) -> bool:
        with _translate_db_errors("claim_reservation"):
            claimed = await claim_reservation(self.db, token, founder_id)
            await self.db.commit()
            return claimed
