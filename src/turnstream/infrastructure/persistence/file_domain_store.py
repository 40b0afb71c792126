"""
File-Based Domain Store

A single JSON document (``{work_dir}/domain.json``) holding projects and
their entities. Implements both DomainDataFetcherProtocol and
AccessCheckerProtocol, and backs the demo tools.

Document shape::

    {
      "projects": [{"id", "name", "owner_id", "members": [...], ...}],
      "tasks": [{"id", "project_id", "title", "status", ...}],
      "goals": [...], "milestones": [...], "plans": [...], "documents": [...],
      "daily_briefs": [{"id", "user_id", "date", "summary", ...}]
    }
"""

import asyncio
import json
import uuid
from pathlib import Path
from typing import Any

import aiofiles
import structlog

from turnstream.core.domain.enums import ContextType
from turnstream.core.domain.models import ContextScope, ProjectFocus
from turnstream.core.utils.time import utc_now_iso

PROJECT_COLLECTIONS: tuple[str, ...] = ("goals", "milestones", "plans", "tasks", "documents")
_ALL_COLLECTIONS: tuple[str, ...] = ("projects", *PROJECT_COLLECTIONS, "daily_briefs")

# Entity id prefix per collection, for records created through tools
_ID_PREFIXES = {
    "projects": "proj",
    "tasks": "task",
    "goals": "goal",
    "milestones": "ms",
    "plans": "plan",
    "documents": "doc",
    "daily_briefs": "brief",
}


class FileDomainStore:
    """JSON-file domain data with owner/member access checks."""

    def __init__(self, work_dir: str | Path = ".turnstream", filename: str = "domain.json"):
        self.work_dir = Path(work_dir)
        self.work_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.work_dir / filename
        self._lock = asyncio.Lock()
        self.logger = structlog.get_logger(__name__)

    # ------------------------------------------------------------------
    # Raw document access
    # ------------------------------------------------------------------

    async def load(self) -> dict[str, Any]:
        """Read the whole document; missing collections are empty lists."""
        document: dict[str, Any] = {}
        if self.path.exists():
            async with aiofiles.open(self.path, encoding="utf-8") as f:
                content = await f.read()
            document = json.loads(content) if content.strip() else {}
        for key in _ALL_COLLECTIONS:
            if not isinstance(document.get(key), list):
                document[key] = []
        return document

    async def save(self, document: dict[str, Any]) -> None:
        """Atomic write of the whole document."""
        temp_file = self.path.with_suffix(".json.tmp")
        async with aiofiles.open(temp_file, "w", encoding="utf-8") as f:
            await f.write(json.dumps(document, indent=2, ensure_ascii=False))
        temp_file.replace(self.path)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def _find(items: list[dict[str, Any]], entity_id: str | None) -> dict[str, Any] | None:
        if not entity_id:
            return None
        for item in items:
            if item.get("id") == entity_id:
                return item
        return None

    @staticmethod
    def _can_read(project: dict[str, Any], user_id: str) -> bool:
        return project.get("owner_id") == user_id or user_id in (project.get("members") or [])

    async def get_project(self, project_id: str) -> dict[str, Any] | None:
        document = await self.load()
        return self._find(document["projects"], project_id)

    async def list_projects(self, user_id: str) -> list[dict[str, Any]]:
        document = await self.load()
        return [p for p in document["projects"] if self._can_read(p, user_id)]

    async def list_entities(
        self, collection: str, project_id: str, status: str | None = None
    ) -> list[dict[str, Any]]:
        document = await self.load()
        items = [i for i in document.get(collection, []) if i.get("project_id") == project_id]
        if status:
            items = [i for i in items if i.get("status") == status]
        return items

    async def create_entity(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        """Append a record to a collection, assigning a prefixed id."""
        if collection not in _ALL_COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")
        async with self._lock:
            document = await self.load()
            created = {
                "id": f"{_ID_PREFIXES[collection]}_{uuid.uuid4().hex[:12]}",
                "created_at": utc_now_iso(),
                **record,
            }
            document[collection].append(created)
            await self.save(document)
        self.logger.info("domain_entity_created", collection=collection, entity_id=created["id"])
        return created

    # ------------------------------------------------------------------
    # DomainDataFetcherProtocol
    # ------------------------------------------------------------------

    async def fetch(
        self,
        user_id: str,
        scope: ContextScope,
        focus: ProjectFocus | None = None,
    ) -> dict[str, Any] | None:
        document = await self.load()

        if scope.context_type is ContextType.GLOBAL:
            projects = [
                {"id": p.get("id"), "name": p.get("name"), "status": p.get("status")}
                for p in document["projects"]
                if self._can_read(p, user_id)
            ]
            return {"projects": projects}

        if scope.context_type is ContextType.DAILY_BRIEF:
            brief = self._find(document["daily_briefs"], scope.entity_id)
            return {"brief": brief} if brief else None

        project_id = scope.project_id or (focus.project_id if focus else None)
        project = self._find(document["projects"], project_id)
        if project is None:
            return None

        data: dict[str, Any] = {"project": project}
        for collection in PROJECT_COLLECTIONS:
            data[collection] = [
                item for item in document[collection] if item.get("project_id") == project["id"]
            ]

        focus_type = focus.effective_focus_type if focus else None
        if focus_type:
            focus_entity = self._find(
                document.get(f"{focus_type}s", []), focus.effective_focus_entity_id
            )
            if focus_entity:
                data["focus_entity"] = focus_entity
        return data

    # ------------------------------------------------------------------
    # AccessCheckerProtocol
    # ------------------------------------------------------------------

    async def has_access(
        self, user_id: str, entity_id: str, required_level: str = "read"
    ) -> bool:
        """Owners and members may read a project; briefs belong to one user."""
        document = await self.load()
        project = self._find(document["projects"], entity_id)
        if project is not None:
            if required_level == "read":
                return self._can_read(project, user_id)
            return project.get("owner_id") == user_id

        brief = self._find(document["daily_briefs"], entity_id)
        if brief is not None:
            return brief.get("user_id") == user_id

        self.logger.debug("access_unknown_entity", entity_id=entity_id, user_id=user_id)
        return False
