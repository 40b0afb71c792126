"""turnstream: agentic chat turn orchestration over SSE."""

__version__ = "0.1.0"
