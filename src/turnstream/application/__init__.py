"""Application layer: turn orchestration and its services."""
