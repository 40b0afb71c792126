"""Entity identifier well-formedness checks and prefix classification.

Any id that reaches a prompt or the agent state must pass
``is_valid_entity_id``: either a UUID or a short prefixed id such as
``proj_123``. Prefix classification is a best-effort fallback for ids found
in tool payloads without an explicit type label.
"""

from __future__ import annotations

import re
from typing import Any

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
_PREFIXED_RE = re.compile(
    r"^(proj|task|goal|plan|doc|ms|risk|req|evt|brief)_[a-z0-9-]{1,64}$",
    re.IGNORECASE,
)

# Prefix -> entity kind, for ids without an explicit type label.
ID_PREFIX_KINDS: dict[str, str] = {
    "proj_": "project",
    "task_": "task",
    "goal_": "goal",
    "plan_": "plan",
    "doc_": "document",
    "ms_": "milestone",
    "risk_": "risk",
    "req_": "requirement",
    "evt_": "event",
}

# Entity kind aliases seen in tool payloads.
_KIND_ALIASES: dict[str, str] = {
    "project": "project",
    "projects": "project",
    "task": "task",
    "tasks": "task",
    "goal": "goal",
    "goals": "goal",
    "plan": "plan",
    "plans": "plan",
    "document": "document",
    "documents": "document",
    "doc": "document",
    "milestone": "milestone",
    "milestones": "milestone",
    "risk": "risk",
    "risks": "risk",
    "requirement": "requirement",
    "requirements": "requirement",
    "event": "event",
    "events": "event",
}


def is_valid_uuid(value: Any) -> bool:
    """True when ``value`` is a canonical UUID string."""
    return isinstance(value, str) and bool(_UUID_RE.match(value))


def is_valid_entity_id(value: Any) -> bool:
    """True when ``value`` is a UUID or a known-prefix entity id."""
    if not isinstance(value, str):
        return False
    value = value.strip()
    return bool(_UUID_RE.match(value) or _PREFIXED_RE.match(value))


def classify_by_prefix(value: Any) -> str | None:
    """Return the entity kind implied by an id prefix, if any."""
    if not isinstance(value, str):
        return None
    lowered = value.lower()
    for prefix, kind in ID_PREFIX_KINDS.items():
        if lowered.startswith(prefix):
            return kind
    return None


def normalize_kind(value: Any) -> str | None:
    """Map an entity type label (``tasks``, ``doc``, ...) to its canonical kind."""
    if not isinstance(value, str):
        return None
    lowered = value.strip().lower()
    if lowered.startswith("onto_"):
        lowered = lowered[len("onto_") :]
    return _KIND_ALIASES.get(lowered)
