"""
store.py tests against a mocked AsyncSession.

The ORM rows are real OnboardingSessionORM / ReservationORM instances; only
db.execute / db.add / db.flush / db.commit and the SAVEPOINT context are
mocked, so no PostgreSQL is required.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from onboarding import database, store
from onboarding.models.founder import FounderORM
from onboarding.models.reservation import ReservationORM
from onboarding.models.session import OnboardingSessionORM
from onboarding.wizard.errors import (
    InvalidStepKey,
    SessionExpiredOrInvalid,
    SessionNotFound,
    TransientIOError,
)
from onboarding.wizard.schemas import ReservationStatus

NOW = datetime.now(timezone.utc)


def _result(row) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = row
    return result


def _savepoint() -> MagicMock:
    savepoint = MagicMock()
    savepoint.__aenter__ = AsyncMock(return_value=savepoint)
    savepoint.__aexit__ = AsyncMock(return_value=False)
    return savepoint


def _db(*rows) -> MagicMock:
    db = MagicMock()
    db.execute = AsyncMock(side_effect=[_result(row) for row in rows])
    db.flush = AsyncMock()
    db.commit = AsyncMock()
    db.begin_nested = MagicMock(return_value=_savepoint())
    return db


def _session_row(**fields) -> OnboardingSessionORM:
    values = dict(
        id="s-1",
        founder_id=None,
        current_step="founder",
        completed_steps=[],
        step_data={},
        is_complete=False,
        created_at=NOW,
        updated_at=NOW,
    )
    values.update(fields)
    return OnboardingSessionORM(**values)


def _reservation_row(**fields) -> ReservationORM:
    values = dict(
        token="res-1",
        email="ada@example.com",
        status="completed",
        claimed_by_founder_id=None,
        claimed_at=None,
        expires_at=None,
        created_at=NOW,
    )
    values.update(fields)
    return ReservationORM(**values)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_session_starts_at_first_step() -> None:
    db = _db()
    session = await store.create_session(db)

    db.add.assert_called_once()
    db.flush.assert_awaited_once()
    assert session.current_step_key == "founder"
    assert session.completed_steps == []
    assert session.step_data == {}
    assert len(session.session_id) == 36


@pytest.mark.asyncio
async def test_persist_merges_and_binds_founder() -> None:
    row = _session_row(step_data={"founder": {"fullName": "Ada"}, "venture": {"name": "Acme"}})
    db = _db(row, None)

    session = await store.persist_step_update(db, "s-1", "founder", {"email": "Ada@Example.com"})

    assert session.step_data["founder"] == {"fullName": "Ada", "email": "Ada@Example.com"}
    assert session.step_data["venture"] == {"name": "Acme"}
    assert session.completed_steps == ["founder"]
    founder = db.add.call_args.args[0]
    assert isinstance(founder, FounderORM)
    assert founder.email == "ada@example.com"
    assert session.founder_id == founder.id


@pytest.mark.asyncio
async def test_persist_reuses_existing_founder() -> None:
    existing = FounderORM(id="founder-1", email="ada@example.com", created_at=NOW)
    db = _db(_session_row(), existing)

    session = await store.persist_step_update(db, "s-1", "founder", {"fullName": "Ada", "email": "ada@example.com"})

    assert session.founder_id == "founder-1"
    db.add.assert_not_called()


@pytest.mark.asyncio
async def test_persist_keeps_completed_steps_ordered() -> None:
    db = _db(_session_row(completed_steps=["venture", "founder"]))
    session = await store.persist_step_update(db, "s-1", "team", {})
    assert session.completed_steps == ["founder", "venture", "team"]
    assert session.current_step_key == "team"


@pytest.mark.asyncio
async def test_persist_rejects_unknown_step_without_io() -> None:
    db = _db()
    with pytest.raises(InvalidStepKey):
        await store.persist_step_update(db, "s-1", "billing", {})
    db.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_persist_missing_session() -> None:
    with pytest.raises(SessionNotFound):
        await store.persist_step_update(_db(None), "s-404", "venture", {"name": "A"})


@pytest.mark.asyncio
async def test_persist_completed_session_rejected() -> None:
    row = _session_row(
        completed_steps=["founder", "venture", "team", "upload", "processing", "analysis"],
        is_complete=True,
    )
    with pytest.raises(SessionExpiredOrInvalid):
        await store.persist_step_update(_db(row), "s-1", "venture", {"name": "B"})


@pytest.mark.asyncio
async def test_mark_complete_is_idempotent() -> None:
    row = _session_row(completed_steps=["founder", "venture", "team", "upload", "processing"])
    db = _db(row, row)

    first = await store.mark_complete(db, "s-1")
    second = await store.mark_complete(db, "s-1")

    assert first.is_complete and second.is_complete
    assert first.completed_steps[-1] == "analysis"
    db.flush.assert_awaited_once()


@pytest.mark.asyncio
async def test_processing_result_read_from_step_data() -> None:
    row = _session_row(step_data={"processing": {"scoringResult": {"output": {"total_score": 55}}}})
    result = await store.get_processing_result(_db(row), "s-1")
    assert result.score == 55
    assert result.has_error is False


# ---------------------------------------------------------------------------
# Reservations
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_reservation_expiry_defaults_from_created_at() -> None:
    row = _reservation_row(created_at=NOW - timedelta(days=31))
    reservation = await store.find_reservation(_db(row), "res-1")
    assert reservation.status == ReservationStatus.completed
    assert reservation.expires_at == row.created_at + timedelta(days=30)
    assert reservation.is_claimable() is False


@pytest.mark.asyncio
async def test_claim_binds_founder() -> None:
    row = _reservation_row()
    claimed = await store.claim_reservation(_db(row), "res-1", "founder-1")
    assert claimed is True
    assert row.claimed_by_founder_id == "founder-1"
    assert row.status == "claimed"
    assert row.claimed_at is not None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "fields, founder_id, expected",
    [
        ({"claimed_by_founder_id": "founder-1", "status": "claimed"}, "founder-1", True),
        ({"claimed_by_founder_id": "founder-2", "status": "claimed"}, "founder-1", False),
        ({"status": "pending"}, "founder-1", False),
        ({"expires_at": NOW - timedelta(minutes=1)}, "founder-1", False),
    ],
)
async def test_claim_outcomes(fields, founder_id, expected) -> None:
    assert await store.claim_reservation(_db(_reservation_row(**fields)), "res-1", founder_id) is expected


@pytest.mark.asyncio
async def test_claim_missing_reservation() -> None:
    assert await store.claim_reservation(_db(None), "res-x", "founder-1") is False


@pytest.mark.asyncio
async def test_claim_runs_inside_savepoint() -> None:
    db = _db(_reservation_row())
    await store.claim_reservation(db, "res-1", "founder-1")

    db.begin_nested.assert_called_once_with()
    savepoint = db.begin_nested.return_value
    savepoint.__aenter__.assert_awaited_once()
    savepoint.__aexit__.assert_awaited_once_with(None, None, None)


@pytest.mark.asyncio
async def test_failed_claim_unwinds_only_its_savepoint() -> None:
    db = _db(_reservation_row())
    db.flush.side_effect = OperationalError("UPDATE reservations", {}, Exception("deadlock"))
    backend = store.SqlSessionBackend(db)

    with pytest.raises(TransientIOError):
        await backend.claim_reservation("res-1", "founder-1")

    exc_type = db.begin_nested.return_value.__aexit__.await_args.args[0]
    assert exc_type is OperationalError
    db.commit.assert_not_awaited()


# ---------------------------------------------------------------------------
# SqlSessionBackend
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_backend_translates_database_errors() -> None:
    db = MagicMock()
    db.execute = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("connection refused")))
    backend = store.SqlSessionBackend(db)

    with pytest.raises(TransientIOError) as excinfo:
        await backend.get_session("s-1")
    assert excinfo.value.status_code == 503


@pytest.mark.asyncio
async def test_backend_passes_domain_errors_through() -> None:
    backend = store.SqlSessionBackend(_db(None))
    with pytest.raises(SessionNotFound):
        await backend.persist_step_update("s-404", "venture", {"name": "A"})


@pytest.mark.asyncio
async def test_backend_commits_each_write() -> None:
    db = _db(_session_row())
    backend = store.SqlSessionBackend(db)

    await backend.persist_step_update("s-1", "venture", {"name": "Acme"})

    db.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_backend_commit_failure_is_transient() -> None:
    db = _db(_session_row())
    db.commit.side_effect = OperationalError("COMMIT", {}, Exception("connection reset"))
    backend = store.SqlSessionBackend(db)

    with pytest.raises(TransientIOError):
        await backend.persist_step_update("s-1", "venture", {"name": "Acme"})


# ---------------------------------------------------------------------------
# get_db
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_db_translates_commit_failure(monkeypatch) -> None:
    session = MagicMock()
    session.commit = AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("connection reset")))
    session.rollback = AsyncMock()
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    monkeypatch.setattr(database, "AsyncSessionLocal", factory)

    dependency = database.get_db()
    assert await dependency.__anext__() is session
    with pytest.raises(TransientIOError):
        await dependency.__anext__()
    session.rollback.assert_awaited_once()
