"""
Core Protocol Interfaces

This package defines protocol interfaces for every external collaborator of
a chat turn. Protocols enable dependency inversion and testability by
defining contracts without coupling to concrete implementations.

Available Protocols:
    - LLMProviderProtocol: Language model completion and streaming
    - ToolProtocol: Tool metadata and execution
    - DomainDataFetcherProtocol / AccessCheckerProtocol: Domain data store
    - SessionStoreProtocol: Session and message persistence
    - LoggerProtocol / ErrorLoggerProtocol: Logging and error sink
"""

from turnstream.core.interfaces.domain_data import (
    AccessCheckerProtocol,
    DomainDataFetcherProtocol,
)
from turnstream.core.interfaces.llm import LLMProviderProtocol
from turnstream.core.interfaces.logging import ErrorLoggerProtocol, LoggerProtocol
from turnstream.core.interfaces.sessions import SessionStoreProtocol
from turnstream.core.interfaces.tools import ToolProtocol

__all__ = [
    "AccessCheckerProtocol",
    "DomainDataFetcherProtocol",
    "ErrorLoggerProtocol",
    "LLMProviderProtocol",
    "LoggerProtocol",
    "SessionStoreProtocol",
    "ToolProtocol",
]
