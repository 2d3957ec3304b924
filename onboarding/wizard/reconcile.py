"""
reconcile.py — ReconciliationProtocol: produce a ready-to-use Session at bootstrap.

Sources are tried as an ordered list of named strategies, highest priority first:

  ResumeByToken   explicit resume link (server record, or a claimable reservation)
  ResumeByCache   this device's cached document
  FreshSession    new server record

Each strategy returns a tagged outcome: Resolved ends the search, Fallthrough
hands over to the next strategy and may carry a Notice for the host plus a
request to clear the local cache. A failed resume token never falls back to
the cache: an expired link starts a fresh session and says so.

Cache writes happen once, at commit time, and only if no newer bootstrap for
the same cache slot started in the meantime (last-initiated wins). The check
and the write are a single conditional save on the local store.
Only exhaustion (FreshSession itself failing) raises.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence, Union

from pydantic import ValidationError

from onboarding.wizard.catalog import FIRST_STEP_KEY, STEP_KEYS
from onboarding.wizard.errors import (
    BootstrapSuperseded,
    SessionExpiredOrInvalid,
    SessionNotFound,
    TransientIOError,
)
from onboarding.wizard.interfaces import LocalSessionStore, SessionBackend
from onboarding.wizard.merge import stage_draft
from onboarding.wizard.resolver import ResolverContext, extract_processing_result, resolve_step_index
from onboarding.wizard.schemas import (
    BootstrapContext,
    BootstrapMode,
    BootstrapResult,
    Notice,
    ReservationClaim,
    Session,
)

logger = logging.getLogger(__name__)

EXPIRED_MESSAGE = "Your previous session expired, starting fresh."
UNREADABLE_CACHE_MESSAGE = "Saved progress on this device could not be read, starting fresh."
COMPLETED_CACHE_MESSAGE = "Your previous registration is already complete, starting a new one."
CACHE_UNAVAILABLE_MESSAGE = "Saved progress on this device is temporarily unavailable."
PROCESSING_UNAVAILABLE_MESSAGE = "Latest analysis status could not be checked; using saved progress."


# ---------------------------------------------------------------------------
# Strategy outcomes
# ---------------------------------------------------------------------------

@dataclass
class Resolved:
    session: Session
    mode: BootstrapMode
    step_index: int = 0
    reservation: Optional[ReservationClaim] = None


@dataclass
class Fallthrough:
    notice: Optional[Notice] = None
    clear_cache: bool = False
    expired: bool = False


StrategyOutcome = Union[Resolved, Fallthrough]


@dataclass
class BootstrapAttempt:
    """Evidence accumulated while walking the strategy list."""
    context: BootstrapContext
    notices: list[Notice] = field(default_factory=list)
    clear_cache: bool = False
    expired: bool = False

    def record(self, outcome: Fallthrough) -> None:
        if outcome.notice is not None:
            self.notices.append(outcome.notice)
        self.clear_cache = self.clear_cache or outcome.clear_cache
        self.expired = self.expired or outcome.expired


class Strategy(Protocol):
    name: str

    async def attempt(self, protocol: "ReconciliationProtocol", state: BootstrapAttempt) -> StrategyOutcome:
        ...


def _expired(kind: str) -> Fallthrough:
    return Fallthrough(notice=Notice(kind=kind, message=EXPIRED_MESSAGE), clear_cache=True, expired=True)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class ResumeByToken:
    name = "resume_by_token"

    async def attempt(self, protocol: "ReconciliationProtocol", state: BootstrapAttempt) -> StrategyOutcome:
        token = state.context.resume_token
        if not token:
            return Fallthrough()

        backend = protocol.backend
        try:
            record = await backend.get_session(token)
            reservation = None if record is not None else await backend.find_reservation(token)
        except TransientIOError as exc:
            logger.warning("Resume token lookup failed: %s", exc.message)
            return _expired(TransientIOError.code)

        if record is not None:
            if record.is_complete:
                logger.info("Resume token points at a completed session session_id=%s", record.session_id)
                return _expired(SessionExpiredOrInvalid.code)
            index, session = await protocol.place(record, state.notices)
            logger.info("Resumed by token session_id=%s step_index=%d", session.session_id, index)
            return Resolved(session=session, mode=BootstrapMode.resumed, step_index=index)

        if reservation is not None and reservation.is_claimable():
            session = await backend.create_session()
            session = stage_draft(
                session,
                FIRST_STEP_KEY,
                {"email": reservation.email, "reservationToken": reservation.token},
            )
            logger.info("Resume token is a claimable reservation; new session_id=%s", session.session_id)
            return Resolved(
                session=session,
                mode=BootstrapMode.claim_reservation,
                step_index=0,
                reservation=ReservationClaim(token=reservation.token, email=reservation.email),
            )

        logger.info("Resume token not found or no longer claimable")
        return _expired(SessionNotFound.code)


class ResumeByCache:
    name = "resume_by_cache"

    async def attempt(self, protocol: "ReconciliationProtocol", state: BootstrapAttempt) -> StrategyOutcome:
        if state.context.resume_token:
            # A token was presented and did not resolve; it outranks the cache.
            return Fallthrough()

        try:
            raw = await protocol.local.load()
        except TransientIOError as exc:
            logger.warning("Local cache read failed: %s", exc.message)
            return Fallthrough(notice=Notice(kind=TransientIOError.code, message=CACHE_UNAVAILABLE_MESSAGE))
        if raw is None:
            return Fallthrough()

        try:
            cached = Session.from_document(raw)
        except ValidationError:
            logger.info("Discarding malformed cached session")
            return Fallthrough(
                notice=Notice(kind=SessionExpiredOrInvalid.code, message=UNREADABLE_CACHE_MESSAGE),
                clear_cache=True,
            )
        if cached.is_complete:
            logger.info("Discarding completed cached session session_id=%s", cached.session_id)
            return Fallthrough(
                notice=Notice(kind=SessionExpiredOrInvalid.code, message=COMPLETED_CACHE_MESSAGE),
                clear_cache=True,
            )

        index, session = await protocol.place(cached, state.notices)
        logger.info("Resumed from cache session_id=%s step_index=%d", session.session_id, index)
        return Resolved(session=session, mode=BootstrapMode.resumed, step_index=index)


class FreshSession:
    name = "fresh_session"

    async def attempt(self, protocol: "ReconciliationProtocol", state: BootstrapAttempt) -> StrategyOutcome:
        session = await protocol.backend.create_session()
        mode = BootstrapMode.expired if state.expired else BootstrapMode.fresh
        logger.info("Started fresh session session_id=%s mode=%s", session.session_id, mode.value)
        return Resolved(session=session, mode=mode, step_index=0)


DEFAULT_STRATEGIES: tuple[Strategy, ...] = (ResumeByToken(), ResumeByCache(), FreshSession())


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class ReconciliationProtocol:
    def __init__(
        self,
        local: LocalSessionStore,
        backend: SessionBackend,
        strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
    ) -> None:
        self.local = local
        self.backend = backend
        self.strategies = tuple(strategies)

    async def resolver_context(self, session: Session, notices: list[Notice]) -> ResolverContext:
        """Processing state for the analysis gate; falls back to the session's own step data."""
        try:
            result = await self.backend.get_processing_result(session.session_id)
        except TransientIOError as exc:
            logger.warning("Processing result lookup failed session_id=%s: %s", session.session_id, exc.message)
            notices.append(Notice(kind=TransientIOError.code, message=PROCESSING_UNAVAILABLE_MESSAGE))
            result = None
        if result is None:
            result = extract_processing_result(session.step_data)
        return ResolverContext(processing_result=result)

    async def place(self, session: Session, notices: list[Notice]) -> tuple[int, Session]:
        """Recompute the step index and align the advisory current_step_key with it."""
        context = await self.resolver_context(session, notices)
        index = resolve_step_index(session.completed_steps, session.current_step_key, context)
        return index, session.model_copy(update={"current_step_key": STEP_KEYS[index]})

    async def _begin(self, notices: list[Notice]) -> Optional[int]:
        try:
            return await self.local.begin_generation()
        except TransientIOError as exc:
            logger.warning("Could not register bootstrap generation: %s", exc.message)
            notices.append(Notice(kind=TransientIOError.code, message=CACHE_UNAVAILABLE_MESSAGE))
            return None

    async def _ensure_latest(self, generation: Optional[int]) -> None:
        if generation is None:
            return
        try:
            latest = await self.local.latest_generation()
        except TransientIOError as exc:
            logger.warning("Could not verify bootstrap generation %d: %s", generation, exc.message)
            return
        if latest != generation:
            logger.info("Discarding superseded bootstrap generation=%d latest=%d", generation, latest)
            raise BootstrapSuperseded(generation)

    async def _commit(
        self,
        generation: Optional[int],
        session: Session,
        clear_cache: bool,
        notices: list[Notice],
    ) -> None:
        """
        Write the resolved session into the cache slot, replacing stale contents.

        With a generation the write is conditional and atomic; without one
        (the counter was unreachable) it is a plain save.
        """
        document = session.to_document()
        try:
            if generation is None:
                await self.local.save(document)
                return
            written = await self.local.save_if_latest(document, generation)
        except TransientIOError as exc:
            logger.warning("Local cache write failed: %s", exc.message)
            notices.append(Notice(kind=TransientIOError.code, message=CACHE_UNAVAILABLE_MESSAGE))
            if clear_cache:
                await self._clear_quietly()
            return
        if not written:
            logger.info("Discarding superseded bootstrap generation=%d", generation)
            raise BootstrapSuperseded(generation)

    async def _clear_quietly(self) -> None:
        # A discarded source must not outlive a failed replacement write.
        try:
            await self.local.clear()
        except TransientIOError as exc:
            logger.warning("Local cache clear failed: %s", exc.message)

    async def bootstrap(self, context: BootstrapContext) -> BootstrapResult:
        """
        Walk the strategies in priority order and commit the first resolution.

        Raises:
            BootstrapSuperseded: a newer bootstrap for the same cache slot started meanwhile.
            TransientIOError: no source succeeded (a fresh session could not be created).
        """
        state = BootstrapAttempt(context=context)
        generation = await self._begin(state.notices)

        for strategy in self.strategies:
            outcome = await strategy.attempt(self, state)
            if isinstance(outcome, Fallthrough):
                state.record(outcome)
                continue

            await self._commit(generation, outcome.session, state.clear_cache, state.notices)
            return BootstrapResult(
                step_index=outcome.step_index,
                session=outcome.session,
                mode=outcome.mode,
                notices=state.notices,
                reservation=outcome.reservation,
            )

        raise TransientIOError("No session source is available")

    async def resume_by_email(self, email: str) -> BootstrapResult:
        """
        "Continue where you left off" lookup. Never creates a session.

        Raises:
            SessionNotFound: no open session and no claimable reservation for the email.
            TransientIOError: a lookup failed.
            BootstrapSuperseded: a newer bootstrap started while looking up.
        """
        normalized = email.strip().lower()
        notices: list[Notice] = []
        generation = await self._begin(notices)

        record = await self.backend.find_session_by_identity(normalized)
        if record is not None and not record.is_complete:
            index, session = await self.place(record, notices)
            await self._commit(generation, session, False, notices)
            logger.info("Resumed by email session_id=%s step_index=%d", session.session_id, index)
            return BootstrapResult(step_index=index, session=session, mode=BootstrapMode.resumed, notices=notices)

        reservation = await self.backend.find_reservation_by_email(normalized)
        if reservation is not None and reservation.is_claimable():
            await self._ensure_latest(generation)
            logger.info("Email resolves to a claimable reservation")
            return BootstrapResult(
                step_index=0,
                session=None,
                mode=BootstrapMode.claim_reservation,
                notices=notices,
                reservation=ReservationClaim(token=reservation.token, email=reservation.email),
            )

        raise SessionNotFound(
            "No saved progress was found for this email",
            "Start a new registration instead",
        )
