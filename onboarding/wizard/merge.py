"""
merge.py — MergeEngine: fold one step's partial update into a Session.

Rules:
  - stepData[key] = {**existing, **partial}   (absent keys preserved, same-name keys overwritten)
  - completedSteps gains key exactly once
  - every other stepData entry is carried over untouched
  - the input Session is never mutated; a new value is returned in one piece
  - no clock reads: last_updated is stamped by the caller when it writes

Business validity (analysis gate, per-step rules) is not checked here.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from onboarding.wizard.catalog import in_catalog_order, is_step_key
from onboarding.wizard.errors import InvalidStepKey
from onboarding.wizard.schemas import Session

logger = logging.getLogger(__name__)


def merge_step_entry(existing: Optional[Mapping[str, Any]], partial: Mapping[str, Any]) -> dict[str, Any]:
    """Shallow merge, partial wins on key collisions."""
    merged = dict(existing or {})
    merged.update(partial)
    return merged


def apply_step_update(session: Session, step_key: str, partial: Mapping[str, Any]) -> Session:
    """
    Return a new Session with partial merged into step_key's entry and the step marked completed.

    Raises:
        InvalidStepKey: step_key is not in the catalog.
    """
    if not is_step_key(step_key):
        raise InvalidStepKey(step_key)

    step_data = dict(session.step_data)
    step_data[step_key] = merge_step_entry(step_data.get(step_key), partial)
    completed = in_catalog_order([*session.completed_steps, step_key])

    logger.debug("Merged step session_id=%s step=%s fields=%d", session.session_id, step_key, len(partial))
    return session.model_copy(
        update={
            "step_data": step_data,
            "completed_steps": completed,
        }
    )


def stage_draft(session: Session, step_key: str, partial: Mapping[str, Any]) -> Session:
    """Merge draft data into a step's entry without marking the step completed."""
    if not is_step_key(step_key):
        raise InvalidStepKey(step_key)
    step_data = dict(session.step_data)
    step_data[step_key] = merge_step_entry(step_data.get(step_key), partial)
    return session.model_copy(update={"step_data": step_data})
