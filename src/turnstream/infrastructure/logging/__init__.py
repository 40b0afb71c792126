"""Error logging adapters."""
