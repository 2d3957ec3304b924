"""
errors.py — Failure taxonomy of the wizard core.

Every fallible outcome of reconciliation and step submission is classified
into one of these kinds before it leaves the core. Each carries the HTTP
status and envelope code used by the exception handler in main.py.
"""
from __future__ import annotations

from typing import Optional


class WizardError(Exception):
    """Base exception for all wizard errors."""

    code = "WIZARD_ERROR"
    status_code = 500

    def __init__(self, message: str, suggestion: Optional[str] = None) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.message}\nSuggestion: {self.suggestion}"
        return self.message


class InvalidStepKey(WizardError):
    """Caller referenced a step that is not in the catalog."""

    code = "INVALID_STEP_KEY"
    status_code = 400

    def __init__(self, step_key: object) -> None:
        self.step_key = step_key
        super().__init__(
            f"Step '{step_key}' is not part of the onboarding flow",
            "Use one of the keys listed by GET /api/wizard/steps",
        )


class SessionNotFound(WizardError):
    """A lookup by id, email or token found nothing."""

    code = "SESSION_NOT_FOUND"
    status_code = 404


class SessionExpiredOrInvalid(WizardError):
    """Cached session is malformed, missing or already complete."""

    code = "SESSION_EXPIRED"
    status_code = 410


class PreconditionFailed(WizardError):
    """The analysis step was treated as reachable without a valid processing result."""

    code = "PRECONDITION_FAILED"
    status_code = 409


class TransientIOError(WizardError):
    """Network or storage failure during a lookup or persist call."""

    code = "TRANSIENT_IO_ERROR"
    status_code = 503

    def __init__(self, message: str, suggestion: Optional[str] = "Retry in a moment") -> None:
        super().__init__(message, suggestion)


class BootstrapSuperseded(WizardError):
    """A newer bootstrap for the same client started while this one was in flight."""

    code = "BOOTSTRAP_SUPERSEDED"
    status_code = 409

    def __init__(self, generation: int) -> None:
        self.generation = generation
        super().__init__(f"Bootstrap #{generation} was superseded by a newer request")


class StepValidationError(ValueError):
    """
    Merged step data failed its own validation rules.

    Subclasses ValueError so the generic 422 VALIDATION_ERROR handler applies.
    The message is a JSON list of {"field", "issue"} dicts.
    """
