"""
Wizard HTTP routes — GET  /api/wizard/steps,
                     POST /api/wizard/bootstrap,
                     GET  /api/wizard/session,
                     POST /api/wizard/steps/{step_key},
                     POST /api/wizard/back,
                     POST /api/wizard/complete,
                     POST /api/wizard/resume-by-email

The host identifies its cache slot (one per browser profile) with the
X-Client-Id header. WizardError subclasses and step validation failures
are turned into the standard error envelope by the handlers registered in main.py.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.cache import RedisSessionCache
from onboarding.database import get_db
from onboarding.store import SqlSessionBackend
from onboarding.wizard.catalog import STEPS
from onboarding.wizard.schemas import BootstrapContext, BootstrapRequest, ResumeByEmailRequest
from onboarding.wizard.service import WizardService

router = APIRouter(prefix="/api/wizard", tags=["wizard"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_client_id(
    x_client_id: str = Header(..., alias="X-Client-Id", min_length=8, max_length=128),
) -> str:
    return x_client_id


async def get_wizard_service(
    request: Request,
    client_id: str = Depends(get_client_id),
    db: AsyncSession = Depends(get_db),
) -> WizardService:
    """One service per request: this client's Redis slot + this request's DB session."""
    return WizardService(
        local=RedisSessionCache(request.app.state.redis, client_id),
        backend=SqlSessionBackend(db),
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/steps")
async def list_steps() -> JSONResponse:
    """The fixed step sequence, in order."""
    return JSONResponse(
        status_code=200,
        content={
            "steps": [
                {"index": i, "key": s.key, "displayName": s.display_name, "description": s.description}
                for i, s in enumerate(STEPS)
            ]
        },
    )


@router.post("/bootstrap")
async def bootstrap(
    payload: Optional[BootstrapRequest] = None,
    resume: Optional[str] = Query(default=None, max_length=64),
    client_id: str = Depends(get_client_id),
    service: WizardService = Depends(get_wizard_service),
) -> JSONResponse:
    """
    Decide where the user resumes: resume token (body or ?resume=) → cached session → fresh session.

    Returns:
        200: {stepIndex, session, mode, notices, reservation}
             mode ∈ resumed | claimReservation | fresh | expired
        409: BOOTSTRAP_SUPERSEDED — a newer bootstrap for this client is in flight
        503: TRANSIENT_IO_ERROR — no session could be created
    """
    token = (payload.resume_token if payload else None) or resume
    logger.debug("Bootstrap requested with_token=%s", bool(token))
    result = await service.bootstrap(BootstrapContext(client_id=client_id, resume_token=token or None))
    return JSONResponse(status_code=200, content=result.to_wire())


@router.get("/session")
async def current_session(service: WizardService = Depends(get_wizard_service)) -> JSONResponse:
    """Cached session for this client with the step index recomputed."""
    result = await service.current_state()
    return JSONResponse(status_code=200, content=result.to_wire())


@router.post("/steps/{step_key}")
async def submit_step(
    step_key: str,
    data: Any = Body(...),
    service: WizardService = Depends(get_wizard_service),
) -> JSONResponse:
    """
    Merge a step's data and mark it completed.

    Returns:
        200: {stepIndex, session, notices}
        400: INVALID_STEP_KEY
        409: PRECONDITION_FAILED — analysis without a valid processing result
        410: SESSION_EXPIRED — nothing usable cached for this client
        422: VALIDATION_ERROR — merged step data failed its rules (draft kept)
        503: TRANSIENT_IO_ERROR — server merge failed (local copy kept)
    """
    result = await service.submit_step(step_key, data)
    return JSONResponse(status_code=200, content=result.to_wire())


@router.post("/back")
async def go_back(service: WizardService = Depends(get_wizard_service)) -> JSONResponse:
    result = await service.go_back()
    return JSONResponse(status_code=200, content=result.to_wire())


@router.post("/complete")
async def complete(service: WizardService = Depends(get_wizard_service)) -> JSONResponse:
    """Acknowledge the analysis step and finalize the session."""
    result = await service.complete()
    return JSONResponse(status_code=200, content=result.to_wire())


@router.post("/resume-by-email")
async def resume_by_email(
    payload: ResumeByEmailRequest,
    service: WizardService = Depends(get_wizard_service),
) -> JSONResponse:
    """
    "Continue where you left off" — never creates a session.

    Returns:
        200: {stepIndex, session, mode: resumed} or {session: null, mode: claimReservation, reservation}
        404: SESSION_NOT_FOUND
    """
    result = await service.resume_by_email(payload.email)
    return JSONResponse(status_code=200, content=result.to_wire())
