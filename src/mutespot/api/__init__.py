"""HTTP API: enforcement router, dependencies and exception handlers."""
