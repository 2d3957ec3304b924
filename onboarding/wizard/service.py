"""
service.py — WizardService: the operations the host UI calls.

  bootstrap(context)        → BootstrapResult   (delegates to ReconciliationProtocol)
  resume_by_email(email)    → BootstrapResult
  current_state()           → StepResult        (cached session, index recomputed)
  submit_step(key, data)    → StepResult
  go_back()                 → StepResult
  complete()                → StepResult        (terminal acknowledgement)
  is_terminal(session)      → bool

Write order on submit: local cache first (optimistic copy, so typed data
survives a failed persist), then the server merge, then the recomputed
index back into the cache. A cache write failure is only a notice; the
server merge still runs. A completed session is inert: every transition
is rejected and its cache slot is cleared.
"""
from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from onboarding.wizard.catalog import (
    ANALYSIS_INDEX,
    ANALYSIS_STEP_KEY,
    FIRST_STEP_KEY,
    STEP_KEYS,
    index_or_first,
    is_step_key,
)
from onboarding.wizard.errors import (
    InvalidStepKey,
    PreconditionFailed,
    SessionExpiredOrInvalid,
    StepValidationError,
    TransientIOError,
)
from onboarding.wizard.interfaces import LocalSessionStore, SessionBackend
from onboarding.wizard.merge import apply_step_update, stage_draft
from onboarding.wizard.reconcile import CACHE_UNAVAILABLE_MESSAGE, ReconciliationProtocol
from onboarding.wizard.resolver import has_valid_score
from onboarding.wizard.schemas import (
    BootstrapContext,
    BootstrapResult,
    Notice,
    Session,
    StepResult,
    utcnow,
)
from onboarding.wizard.validator import ensure_step_payload, validate_step

logger = logging.getLogger(__name__)

RESERVATION_NOT_CLAIMED = "RESERVATION_NOT_CLAIMED"


class WizardService:
    def __init__(self, local: LocalSessionStore, backend: SessionBackend) -> None:
        self.local = local
        self.backend = backend
        self.protocol = ReconciliationProtocol(local, backend)

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    async def bootstrap(self, context: BootstrapContext) -> BootstrapResult:
        result = await self.protocol.bootstrap(context)
        logger.info(
            "Bootstrap mode=%s step_index=%d notices=%d",
            result.mode.value, result.step_index, len(result.notices),
        )
        return result

    async def resume_by_email(self, email: str) -> BootstrapResult:
        return await self.protocol.resume_by_email(email)

    # ------------------------------------------------------------------
    # Session access
    # ------------------------------------------------------------------

    @staticmethod
    def is_terminal(session: Session) -> bool:
        return session.is_complete

    async def current_session(self) -> Session:
        """
        The cached session for this client, validated.

        Raises:
            SessionExpiredOrInvalid: nothing cached, unreadable, or already complete.
            TransientIOError: the cache could not be read.
        """
        raw = await self.local.load()
        if raw is None:
            raise SessionExpiredOrInvalid(
                "No active onboarding session on this device",
                "Reload the wizard to resume or start a new session",
            )
        try:
            session = Session.from_document(raw)
        except ValidationError:
            await self.local.clear()
            raise SessionExpiredOrInvalid(
                "Saved progress on this device could not be read",
                "Reload the wizard to start fresh",
            )
        if self.is_terminal(session):
            await self.local.clear()
            raise SessionExpiredOrInvalid("This onboarding session is already complete")
        return session

    async def current_state(self) -> StepResult:
        notices: list[Notice] = []
        index, session = await self.protocol.place(await self.current_session(), notices)
        return StepResult(step_index=index, session=session, notices=notices)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _require_analysis_gate(self, session: Session, notices: list[Notice]) -> None:
        if ANALYSIS_STEP_KEY in session.completed_steps:
            return
        context = await self.protocol.resolver_context(session, notices)
        if not has_valid_score(context.processing_result):
            raise PreconditionFailed(
                "Analysis is not available until processing produces a valid score",
                "Wait for processing to finish or submit it again",
            )

    async def _save_quietly(self, session: Session, notices: list[Notice]) -> None:
        try:
            await self.local.save(session.to_document())
        except TransientIOError as exc:
            logger.warning("Local cache write failed session_id=%s: %s", session.session_id, exc.message)
            notices.append(Notice(kind=TransientIOError.code, message=CACHE_UNAVAILABLE_MESSAGE))

    async def _claim_reservation(self, session: Session, notices: list[Notice]) -> None:
        entry = session.step_data.get(FIRST_STEP_KEY) or {}
        token = entry.get("reservationToken")
        if not token or not session.founder_id:
            return
        try:
            claimed = await self.backend.claim_reservation(token, session.founder_id)
        except TransientIOError as exc:
            logger.warning("Reservation claim failed session_id=%s: %s", session.session_id, exc.message)
            claimed = False
        if claimed:
            logger.info("Reservation claimed session_id=%s founder_id=%s", session.session_id, session.founder_id)
        else:
            notices.append(Notice(
                kind=RESERVATION_NOT_CLAIMED,
                message="Your pre-registration payment could not be linked yet; support can link it later.",
            ))

    async def submit_step(self, step_key: str, data: Any) -> StepResult:
        """
        Merge a step's data, mark it completed, persist, and return the next step.

        Raises:
            InvalidStepKey: step_key is not in the catalog.
            StepValidationError: merged step data failed validation (draft is kept locally
                unless the step was already completed).
            PreconditionFailed: analysis submitted without a valid processing result.
            SessionExpiredOrInvalid: no usable session on this device.
            TransientIOError: the server merge failed (the local copy is kept).
        """
        if not is_step_key(step_key):
            raise InvalidStepKey(step_key)
        payload = ensure_step_payload(data)
        session = await self.current_session()
        notices: list[Notice] = []

        if step_key == ANALYSIS_STEP_KEY:
            await self._require_analysis_gate(session, notices)

        updated = apply_step_update(session, step_key, payload)
        entry = updated.step_data[step_key]
        try:
            validate_step(step_key, entry)
        except StepValidationError:
            # A completed step keeps its last valid entry.
            if step_key not in session.completed_steps:
                draft = stage_draft(session, step_key, payload).model_copy(update={"last_updated": utcnow()})
                await self._save_quietly(draft, notices)
            raise

        updated = updated.model_copy(update={"last_updated": utcnow()})
        await self._save_quietly(updated, notices)

        try:
            record = await self.backend.persist_step_update(session.session_id, step_key, entry)
        except TransientIOError:
            logger.warning(
                "Server merge failed; local copy kept session_id=%s step=%s", session.session_id, step_key
            )
            raise

        if record.founder_id and record.founder_id != updated.founder_id:
            updated = updated.model_copy(update={"founder_id": record.founder_id})
        if step_key == FIRST_STEP_KEY:
            await self._claim_reservation(updated, notices)

        index, updated = await self.protocol.place(updated, notices)
        await self._save_quietly(updated, notices)
        logger.info("Step submitted session_id=%s step=%s next_index=%d", updated.session_id, step_key, index)
        return StepResult(step_index=index, session=updated, notices=notices)

    async def go_back(self) -> StepResult:
        """Move the advisory current step back by one (floor 0). completed_steps is untouched."""
        session = await self.current_session()
        index = max(0, index_or_first(session.current_step_key) - 1)
        session = session.model_copy(update={"current_step_key": STEP_KEYS[index], "last_updated": utcnow()})
        await self.local.save(session.to_document())
        logger.info("Stepped back session_id=%s step_index=%d", session.session_id, index)
        return StepResult(step_index=index, session=session)

    async def complete(self) -> StepResult:
        """
        Acknowledge the terminal step: mark the session complete and clear the cache slot.

        Raises:
            PreconditionFailed: earlier steps missing, or no valid processing result.
            SessionExpiredOrInvalid: no usable session on this device.
            TransientIOError: the server could not record completion.
        """
        session = await self.current_session()
        notices: list[Notice] = []

        missing = [key for key in STEP_KEYS[:ANALYSIS_INDEX] if key not in session.completed_steps]
        if missing:
            raise PreconditionFailed(
                f"Steps not completed yet: {', '.join(missing)}",
                "Finish the remaining steps first",
            )
        await self._require_analysis_gate(session, notices)

        record = await self.backend.mark_complete(session.session_id)
        final = apply_step_update(session, ANALYSIS_STEP_KEY, {}).model_copy(
            update={
                "is_complete": True,
                "current_step_key": ANALYSIS_STEP_KEY,
                "founder_id": record.founder_id or session.founder_id,
                "last_updated": utcnow(),
            }
        )

        try:
            await self.local.clear()
        except TransientIOError as exc:
            logger.warning("Could not clear cache for completed session_id=%s: %s", final.session_id, exc.message)
            notices.append(Notice(kind=TransientIOError.code, message=CACHE_UNAVAILABLE_MESSAGE))

        logger.info("Onboarding complete session_id=%s", final.session_id)
        return StepResult(step_index=ANALYSIS_INDEX, session=final, notices=notices)
