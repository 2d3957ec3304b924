"""
resolver.py — StepResolver: which step should the user see now?

The answer is always recomputed from completed steps and the processing
result; the cached current-step hint never decides the outcome. The
function is pure and total: malformed input is treated as "nothing
completed", and the analysis gate redirects instead of raising.

Algorithm:
  1. nothing completed                           → 0
  2. highest completed index (backward scan)     → last
  3. candidate = last + 1
  4. candidate is the analysis step:
       analysis already completed                → analysis (re-entry is always allowed)
       no valid score (absent / error / <= 0)    → processing
  5. clamp to [0, N-1]
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from onboarding.wizard.catalog import (
    ANALYSIS_INDEX,
    ANALYSIS_STEP_KEY,
    PROCESSING_INDEX,
    PROCESSING_STEP_KEY,
    STEP_COUNT,
    STEP_KEYS,
)
from onboarding.wizard.schemas import ProcessingResult


@dataclass(frozen=True)
class ResolverContext:
    """Auxiliary validation state consulted by the analysis gate."""
    processing_result: Optional[ProcessingResult] = None


def has_valid_score(result: Optional[ProcessingResult]) -> bool:
    return result is not None and not result.has_error and result.score > 0


def _completed_set(completed_steps: Any) -> frozenset[str]:
    if isinstance(completed_steps, (str, bytes)) or completed_steps is None:
        return frozenset()
    try:
        return frozenset(k for k in completed_steps if isinstance(k, str))
    except TypeError:
        return frozenset()


def resolve_step_index(
    completed_steps: Optional[Iterable[str]],
    current_step_hint: Optional[str] = None,
    context: Optional[ResolverContext] = None,
) -> int:
    """
    Zero-based index of the step the user should land on.

    current_step_hint is accepted alongside the cached document but never
    influences the result.
    """
    completed = _completed_set(completed_steps)
    if not completed:
        return 0

    last_completed = -1
    for index in range(STEP_COUNT - 1, -1, -1):
        if STEP_KEYS[index] in completed:
            last_completed = index
            break
    if last_completed < 0:
        return 0

    candidate = last_completed + 1
    if candidate == ANALYSIS_INDEX:
        result = context.processing_result if context is not None else None
        if ANALYSIS_STEP_KEY in completed:
            candidate = ANALYSIS_INDEX
        elif not has_valid_score(result):
            candidate = PROCESSING_INDEX

    return max(0, min(candidate, STEP_COUNT - 1))


# ---------------------------------------------------------------------------
# Processing result extraction from step data
# ---------------------------------------------------------------------------

def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def extract_processing_result(step_data: Optional[Mapping[str, Any]]) -> Optional[ProcessingResult]:
    """
    Derive a ProcessingResult from the 'processing' step entry, if one was recorded.

    The scoring collaborator's payload is opaque; only these places are read:
      score:  scoringResult.output.total_score | scoringResult.total_score | score
      error:  hasError | error | scoringResult.error
    Returns None when the entry has no recognizable score.
    """
    if not isinstance(step_data, Mapping):
        return None
    entry = step_data.get(PROCESSING_STEP_KEY)
    if not isinstance(entry, Mapping):
        return None

    scoring = entry.get("scoringResult")
    scoring = scoring if isinstance(scoring, Mapping) else {}
    output = scoring.get("output")
    output = output if isinstance(output, Mapping) else {}

    score = None
    for candidate in (output.get("total_score"), scoring.get("total_score"), entry.get("score")):
        score = _as_number(candidate)
        if score is not None:
            break

    has_error = bool(entry.get("hasError") or entry.get("error") or scoring.get("error"))
    if score is None and not has_error:
        return None
    return ProcessingResult(score=score or 0, has_error=has_error)
