"""
Step completion validator.

A step may hold draft data at any time, but it is only marked completed when
its MERGED entry passes the rules below. Collects every violation in a single
pass and raises StepValidationError (a ValueError) with a JSON-encoded list of
{field, issue} dicts so the route can build the standard error envelope.

Rules:
  founder     fullName non-empty, email syntactically valid
  venture     name non-empty
  team        members, when present, is a list of at most 4 entries
  upload      fileName non-empty
  processing  any object
  analysis    any object

Only the fields named here are inspected; everything else in a step's entry
is opaque to the wizard core.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Mapping

from onboarding.wizard.catalog import is_step_key
from onboarding.wizard.errors import InvalidStepKey, StepValidationError

logger = logging.getLogger(__name__)

_MAX_TEAM_MEMBERS = 4
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

Violation = dict[str, Any]


def _require_text(entry: Mapping[str, Any], field: str, label: str) -> list[Violation]:
    value = entry.get(field)
    if not isinstance(value, str) or not value.strip():
        return [{"field": field, "issue": f"{label} is required."}]
    return []


def _founder_rules(entry: Mapping[str, Any]) -> list[Violation]:
    violations = _require_text(entry, "fullName", "Full name")
    email = entry.get("email")
    if not isinstance(email, str) or not email.strip():
        violations.append({"field": "email", "issue": "Email is required."})
    elif not _EMAIL_RE.match(email.strip()):
        violations.append({"field": "email", "issue": "Email address is not valid."})
    return violations


def _venture_rules(entry: Mapping[str, Any]) -> list[Violation]:
    return _require_text(entry, "name", "Venture name")


def _team_rules(entry: Mapping[str, Any]) -> list[Violation]:
    members = entry.get("members")
    if members is None:
        return []
    if not isinstance(members, list):
        return [{"field": "members", "issue": "Team members must be a list."}]
    if len(members) > _MAX_TEAM_MEMBERS:
        return [{
            "field": "members",
            "issue": f"At most {_MAX_TEAM_MEMBERS} team members can be added, got {len(members)}.",
        }]
    return []


def _upload_rules(entry: Mapping[str, Any]) -> list[Violation]:
    return _require_text(entry, "fileName", "Pitch deck file name")


_RULES: dict[str, Callable[[Mapping[str, Any]], list[Violation]]] = {
    "founder": _founder_rules,
    "venture": _venture_rules,
    "team": _team_rules,
    "upload": _upload_rules,
}


def ensure_step_payload(data: Any) -> dict[str, Any]:
    """Step submissions must be JSON objects; anything else is a validation error."""
    if not isinstance(data, Mapping):
        raise StepValidationError(json.dumps([
            {"field": None, "issue": "Step data must be a JSON object."}
        ]))
    return dict(data)


def validate_step(step_key: str, entry: Mapping[str, Any]) -> None:
    """
    Validate a step's merged entry before the step is marked completed.

    Raises:
        InvalidStepKey: step_key is not in the catalog.
        StepValidationError: one or more rules failed; message is a JSON list.
    """
    if not is_step_key(step_key):
        raise InvalidStepKey(step_key)

    rule = _RULES.get(step_key)
    violations = rule(entry) if rule is not None else []
    if violations:
        logger.info("Step validation failed step=%s violations=%d", step_key, len(violations))
        raise StepValidationError(json.dumps(violations))
