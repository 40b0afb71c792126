"""Core layer: domain models, pure domain logic and protocol interfaces."""
