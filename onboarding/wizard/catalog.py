"""
catalog.py — Fixed, ordered step sequence of the onboarding wizard.

The order is part of the contract: StepResolver reasons about "the last
completed index", so reordering here changes which step users land on.
Unknown keys are NotFound (None) everywhere; callers fall back to index 0.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class StepDescriptor:
    key: str
    display_name: str
    description: str = ""


STEPS: tuple[StepDescriptor, ...] = (
    StepDescriptor("founder", "Founder Details", "Personal information and experience"),
    StepDescriptor("venture", "Venture Info", "Company details and market information"),
    StepDescriptor("team", "Team Members", "Add up to 4 team members (optional)"),
    StepDescriptor("upload", "Pitch Deck", "Upload your pitch deck"),
    StepDescriptor("processing", "Processing", "Analyzing your submission"),
    StepDescriptor("analysis", "Analysis", "Your score analysis results"),
)

STEP_KEYS: tuple[str, ...] = tuple(step.key for step in STEPS)
STEP_COUNT = len(STEPS)

FIRST_STEP_KEY = STEP_KEYS[0]
PROCESSING_STEP_KEY = "processing"
ANALYSIS_STEP_KEY = "analysis"

PROCESSING_INDEX = STEP_KEYS.index(PROCESSING_STEP_KEY)
ANALYSIS_INDEX = STEP_KEYS.index(ANALYSIS_STEP_KEY)

_INDEX_BY_KEY = {key: i for i, key in enumerate(STEP_KEYS)}


def index_of(key: object) -> Optional[int]:
    """Zero-based index of a step key, or None when the key is not in the catalog."""
    if not isinstance(key, str):
        return None
    return _INDEX_BY_KEY.get(key)


def index_or_first(key: object) -> int:
    """index_of() with the downstream fallback applied: unknown keys land on step 0."""
    index = index_of(key)
    return 0 if index is None else index


def step_at(index: int) -> StepDescriptor:
    """Descriptor at a zero-based index. Raises IndexError when out of range."""
    if index < 0 or index >= STEP_COUNT:
        raise IndexError(f"Step index {index} out of range 0..{STEP_COUNT - 1}")
    return STEPS[index]


def is_step_key(key: object) -> bool:
    return index_of(key) is not None


def in_catalog_order(keys) -> list[str]:
    """Known keys from an arbitrary iterable, de-duplicated, in catalog order."""
    present = {k for k in keys if is_step_key(k)}
    return [key for key in STEP_KEYS if key in present]
