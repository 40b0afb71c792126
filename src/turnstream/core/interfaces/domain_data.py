"""
Domain Data Protocols

Interfaces to the store of durable domain entities (projects, tasks, goals,
briefs). The turn orchestrator only needs two things from it: a data snapshot
for a context scope, and a read-access decision.
"""

from typing import Any, Protocol

from turnstream.core.domain.models import ContextScope, ProjectFocus


class DomainDataFetcherProtocol(Protocol):
    """Fetch the data snapshot that backs a context scope."""

    async def fetch(
        self,
        user_id: str,
        scope: ContextScope,
        focus: ProjectFocus | None = None,
    ) -> dict[str, Any] | None:
        """
        Fetch a snapshot for ``scope``.

        Returns:
            A JSON-compatible dict. For global scope it carries ``projects``;
            for project scopes ``project`` plus lists such as ``tasks`` and
            ``goals``, and ``focus_entity`` when a focus is given. None when
            nothing exists for the scope.

        Raises:
            Any exception on transport failure. Callers degrade gracefully.
        """
        ...


class AccessCheckerProtocol(Protocol):
    """Decide whether a user may read an entity."""

    async def has_access(
        self, user_id: str, entity_id: str, required_level: str = "read"
    ) -> bool:
        """
        Return True when access is granted, False on explicit denial.

        Raises:
            Any exception on transport failure. Callers fail open.
        """
        ...
