"""Infrastructure adapters for the core protocols."""
