"""Message store adapters."""
