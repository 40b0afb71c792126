"""Agent state: durable, bounded cross-turn memory carried on a session.

The agent state is a plain JSON-compatible dict so it can be stored in
``ChatSession.agent_metadata["agent_state"]`` and shown to the LLM verbatim::

    {
        "session_id": "...",
        "current_understanding": {"entities": [...], "dependencies": [...]},
        "assumptions": [...],
        "expectations": [...],
        "tentative_hypotheses": [...],
        "items": [...],
        "last_summarized_at": "..."   # optional
    }

All functions here are pure and return new dicts. Merges are additive:
entries not mentioned by a delta are kept as-is.
"""

from __future__ import annotations

import copy
import json
import re
import uuid
from typing import Any, Iterable

from turnstream.core.domain.entity_ids import is_valid_entity_id
from turnstream.core.domain.enums import AgentStateItemKind, AgentStateItemStatus
from turnstream.core.utils.time import utc_now_iso

MAX_ENTITIES = 40
MAX_DEPENDENCIES = 40
MAX_ASSUMPTIONS = 20
MAX_EXPECTATIONS = 20
MAX_HYPOTHESES = 20
MAX_ITEMS = 50

DEFAULT_ASSUMPTION_CONFIDENCE = 0.6

_ITEM_KINDS = frozenset(kind.value for kind in AgentStateItemKind)
_ITEM_STATUSES = frozenset(status.value for status in AgentStateItemStatus)
_JSON_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def empty_agent_state(session_id: str) -> dict[str, Any]:
    """Build the initial agent state for a session."""
    return {
        "session_id": session_id,
        "current_understanding": {"entities": [], "dependencies": []},
        "assumptions": [],
        "expectations": [],
        "tentative_hypotheses": [],
        "items": [],
    }


def _normalize_text(value: str) -> str:
    return value.strip().lower()


def _as_list(value: Any) -> list[Any]:
    return list(value) if isinstance(value, list) else []


def _valid_ids(values: Any) -> list[str]:
    return [v for v in _as_list(values) if is_valid_entity_id(v)]


def _bounded(entries: list[Any], limit: int) -> list[Any]:
    """Keep the newest ``limit`` entries (entries are appended in order)."""
    return entries[-limit:] if len(entries) > limit else entries


def sanitize_agent_state(state: Any, session_id: str) -> dict[str, Any]:
    """Return a well-shaped copy of ``state`` with malformed ids stripped.

    Entities whose id fails ``is_valid_entity_id`` are dropped, dependencies
    are dropped unless both endpoints are valid, and id lists on items and
    expectations are filtered. Missing sections are created empty.
    """
    if not isinstance(state, dict):
        return empty_agent_state(session_id)

    source = copy.deepcopy(state)
    understanding = source.get("current_understanding")
    if not isinstance(understanding, dict):
        understanding = {}

    entities = [
        entity
        for entity in _as_list(understanding.get("entities"))
        if isinstance(entity, dict)
        and is_valid_entity_id(entity.get("id"))
        and isinstance(entity.get("kind"), str)
        and entity.get("kind")
    ]
    dependencies = [
        dep
        for dep in _as_list(understanding.get("dependencies"))
        if isinstance(dep, dict)
        and is_valid_entity_id(dep.get("from"))
        and is_valid_entity_id(dep.get("to"))
    ]

    items = []
    for item in _as_list(source.get("items")):
        if not isinstance(item, dict) or not item.get("id"):
            continue
        if "relatedEntityIds" in item:
            item["relatedEntityIds"] = _valid_ids(item.get("relatedEntityIds"))
        items.append(item)

    expectations = []
    for expectation in _as_list(source.get("expectations")):
        if not isinstance(expectation, dict):
            continue
        if "expected_ids" in expectation:
            expectation["expected_ids"] = _valid_ids(expectation.get("expected_ids"))
        expectations.append(expectation)

    sanitized = {
        **source,
        "session_id": source.get("session_id") or session_id,
        "current_understanding": {
            "entities": _bounded(entities, MAX_ENTITIES),
            "dependencies": _bounded(dependencies, MAX_DEPENDENCIES),
        },
        "assumptions": [a for a in _as_list(source.get("assumptions")) if isinstance(a, dict)],
        "expectations": expectations,
        "tentative_hypotheses": [
            h for h in _as_list(source.get("tentative_hypotheses")) if isinstance(h, dict)
        ],
        "items": items,
    }
    return sanitized


def parse_agent_state_delta(raw: Any) -> dict[str, Any] | None:
    """Normalize an LLM response into ``{agent_state_item_updates, agent_state_updates}``.

    Accepts a dict or a JSON string (optionally wrapped in a Markdown fence).
    Returns None when nothing usable can be parsed.
    """
    if not raw:
        return None
    parsed: Any = raw
    if isinstance(raw, str):
        cleaned = _JSON_FENCE_RE.sub("", raw.strip())
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError:
            return None
    if not isinstance(parsed, dict):
        return None

    item_updates = parsed.get("agent_state_item_updates")
    state_updates = parsed.get("agent_state_updates")
    return {
        "agent_state_item_updates": item_updates if isinstance(item_updates, list) else [],
        "agent_state_updates": state_updates if isinstance(state_updates, dict) else {},
    }


def apply_agent_state_delta(
    state: dict[str, Any], delta: dict[str, Any], *, now: str | None = None
) -> dict[str, Any]:
    """Merge a reconciliation delta into ``state`` and return the new state."""
    now = now or utc_now_iso()
    updated = copy.deepcopy(state)

    _apply_item_updates(updated, _as_list(delta.get("agent_state_item_updates")), now)

    state_updates = delta.get("agent_state_updates")
    if isinstance(state_updates, dict):
        understanding = state_updates.get("current_understanding")
        if isinstance(understanding, dict):
            if "entities" in understanding:
                merge_entities(updated, _as_list(understanding.get("entities")))
            if "dependencies" in understanding:
                _merge_dependencies(updated, _as_list(understanding.get("dependencies")))
        if isinstance(state_updates.get("assumptions"), list):
            _merge_assumptions(updated, state_updates["assumptions"])
        if isinstance(state_updates.get("expectations"), list):
            _merge_expectations(updated, state_updates["expectations"])
        if isinstance(state_updates.get("tentative_hypotheses"), list):
            _merge_hypotheses(updated, state_updates["tentative_hypotheses"])

    return updated


def merge_agent_state(
    state: dict[str, Any],
    delta: dict[str, Any] | None,
    entity_updates: Iterable[Any] = (),
    *,
    now: str | None = None,
) -> dict[str, Any]:
    """Fold an optional LLM delta and tool entity updates into ``state``.

    Entity updates from tool summaries are merged even when ``delta`` is
    None, so a failed reconciliation call still records what the turn
    touched. ``last_summarized_at`` is always refreshed.
    """
    now = now or utc_now_iso()
    merged = apply_agent_state_delta(state, delta or {}, now=now)
    merge_entities(merged, entity_updates)
    merged["last_summarized_at"] = now
    return merged


def merge_entities(state: dict[str, Any], entities: Iterable[Any]) -> None:
    """Merge ``{id, kind, name}`` records keyed by ``kind:id`` (in place)."""
    understanding = state.setdefault("current_understanding", {})
    existing: dict[str, dict[str, Any]] = {}
    for entity in _as_list(understanding.get("entities")):
        existing[f"{entity.get('kind')}:{entity.get('id')}"] = entity

    for entity in entities:
        if not isinstance(entity, dict):
            continue
        entity_id = entity.get("id")
        kind = entity.get("kind")
        if not is_valid_entity_id(entity_id) or not isinstance(kind, str) or not kind:
            continue
        key = f"{kind}:{entity_id}"
        previous = existing.pop(key, {})
        name = entity.get("name") or previous.get("name")
        existing[key] = {"id": entity_id, "kind": kind, "name": name}

    understanding["entities"] = _bounded(list(existing.values()), MAX_ENTITIES)


def _merge_dependencies(state: dict[str, Any], dependencies: list[Any]) -> None:
    understanding = state.setdefault("current_understanding", {})
    existing: dict[str, dict[str, Any]] = {}
    for dep in _as_list(understanding.get("dependencies")):
        existing[f"{dep.get('from')}:{dep.get('to')}:{dep.get('rel') or ''}"] = dep

    for dep in dependencies:
        if not isinstance(dep, dict):
            continue
        source, target = dep.get("from"), dep.get("to")
        if not is_valid_entity_id(source) or not is_valid_entity_id(target):
            continue
        key = f"{source}:{target}:{dep.get('rel') or ''}"
        existing[key] = {"from": source, "to": target, "rel": dep.get("rel")}

    understanding["dependencies"] = _bounded(list(existing.values()), MAX_DEPENDENCIES)


def _merge_assumptions(state: dict[str, Any], updates: list[Any]) -> None:
    by_id: dict[str, dict[str, Any]] = {}
    by_text: dict[str, str] = {}
    for assumption in _as_list(state.get("assumptions")):
        if not assumption.get("id"):
            continue
        by_id[assumption["id"]] = assumption
        by_text[_normalize_text(str(assumption.get("hypothesis", "")))] = assumption["id"]

    for update in updates:
        if not isinstance(update, dict):
            continue
        hypothesis = update.get("hypothesis")
        if not isinstance(hypothesis, str) or not hypothesis.strip():
            continue
        normalized = _normalize_text(hypothesis)
        existing_id = update.get("id") or by_text.get(normalized)
        confidence = update.get("confidence")
        evidence = update.get("evidence")

        if existing_id and existing_id in by_id:
            current = by_id[existing_id]
            by_id[existing_id] = {
                **current,
                "hypothesis": hypothesis,
                "confidence": confidence
                if isinstance(confidence, (int, float))
                else current.get("confidence"),
                "evidence": evidence if isinstance(evidence, list) else current.get("evidence"),
            }
            continue

        new_id = existing_id or str(uuid.uuid4())
        by_id[new_id] = {
            "id": new_id,
            "hypothesis": hypothesis,
            "confidence": confidence
            if isinstance(confidence, (int, float))
            else DEFAULT_ASSUMPTION_CONFIDENCE,
            "evidence": evidence if isinstance(evidence, list) else None,
        }
        by_text[normalized] = new_id

    state["assumptions"] = _bounded(list(by_id.values()), MAX_ASSUMPTIONS)


def _merge_expectations(state: dict[str, Any], updates: list[Any]) -> None:
    def key_of(entry: dict[str, Any]) -> str:
        return _normalize_text(f"{entry.get('action')}:{entry.get('expected_outcome')}")

    by_key: dict[str, dict[str, Any]] = {}
    for existing in _as_list(state.get("expectations")):
        if existing.get("action") and existing.get("expected_outcome"):
            by_key.setdefault(key_of(existing), existing)

    for update in updates:
        if not isinstance(update, dict):
            continue
        if not update.get("action") or not update.get("expected_outcome"):
            continue
        if "expected_ids" in update:
            update = {**update, "expected_ids": _valid_ids(update.get("expected_ids"))}
        key = key_of(update)
        current = by_key.get(key)
        if current:
            by_key[key] = {**current, **update, "id": current.get("id") or update.get("id")}
            continue
        by_key[key] = {"id": update.get("id") or str(uuid.uuid4()), **update}

    state["expectations"] = _bounded(list(by_key.values()), MAX_EXPECTATIONS)


def _merge_hypotheses(state: dict[str, Any], updates: list[Any]) -> None:
    by_id: dict[str, dict[str, Any]] = {}
    by_text: dict[str, str] = {}
    for entry in _as_list(state.get("tentative_hypotheses")):
        if not entry.get("id"):
            continue
        by_id[entry["id"]] = entry
        by_text[_normalize_text(str(entry.get("hypothesis", "")))] = entry["id"]

    for update in updates:
        if not isinstance(update, dict):
            continue
        hypothesis = update.get("hypothesis")
        if not isinstance(hypothesis, str) or not hypothesis.strip():
            continue
        normalized = _normalize_text(hypothesis)
        existing_id = update.get("id") or by_text.get(normalized)
        if existing_id and existing_id in by_id:
            current = by_id[existing_id]
            by_id[existing_id] = {
                **current,
                "hypothesis": hypothesis,
                "reason": update.get("reason") or current.get("reason"),
            }
            continue
        new_id = existing_id or str(uuid.uuid4())
        by_id[new_id] = {"id": new_id, "hypothesis": hypothesis, "reason": update.get("reason")}
        by_text[normalized] = new_id

    state["tentative_hypotheses"] = _bounded(list(by_id.values()), MAX_HYPOTHESES)


def _apply_item_updates(state: dict[str, Any], updates: list[Any], now: str) -> None:
    items: list[dict[str, Any]] = _as_list(state.get("items"))

    for update in updates:
        if not isinstance(update, dict):
            continue
        op = update.get("op")

        if op == "add" and isinstance(update.get("item"), dict):
            item = update["item"]
            title = item.get("title")
            if not isinstance(title, str) or not title.strip():
                continue
            if item.get("kind") not in _ITEM_KINDS:
                continue
            item_id = item.get("id") if isinstance(item.get("id"), str) else str(uuid.uuid4())
            status = item.get("status") if item.get("status") in _ITEM_STATUSES else "active"
            hydrated = {
                "id": item_id,
                "kind": item["kind"],
                "title": title.strip(),
                "details": item.get("details") if isinstance(item.get("details"), str) else None,
                "status": status,
                "relatedEntityIds": _valid_ids(item.get("relatedEntityIds")),
                "createdAt": item.get("createdAt") or now,
                "updatedAt": item.get("updatedAt") or now,
            }
            index = next((i for i, e in enumerate(items) if e.get("id") == item_id), None)
            if index is None:
                items.append(hydrated)
            else:
                items[index] = hydrated
            continue

        if op == "update" and update.get("id"):
            index = next((i for i, e in enumerate(items) if e.get("id") == update["id"]), None)
            if index is None:
                continue
            patch = update.get("patch") if isinstance(update.get("patch"), dict) else {}
            current = dict(items[index])
            if isinstance(patch.get("title"), str):
                current["title"] = patch["title"].strip()
            if isinstance(patch.get("details"), str):
                current["details"] = patch["details"]
            elif "details" in patch and patch["details"] is None:
                current["details"] = None
            if patch.get("status") in _ITEM_STATUSES:
                current["status"] = patch["status"]
            if patch.get("kind") in _ITEM_KINDS:
                current["kind"] = patch["kind"]
            if isinstance(patch.get("relatedEntityIds"), list):
                current["relatedEntityIds"] = _valid_ids(patch["relatedEntityIds"])
            current["updatedAt"] = now
            items[index] = current
            continue

        if op == "remove" and update.get("id"):
            items = [item for item in items if item.get("id") != update["id"]]

    state["items"] = _bounded(items, MAX_ITEMS)
