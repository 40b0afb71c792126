"""File-based persistence adapters."""

from turnstream.infrastructure.persistence.file_domain_store import FileDomainStore
from turnstream.infrastructure.persistence.file_session_store import FileSessionStore

__all__ = ["FileDomainStore", "FileSessionStore"]
