"""Core definitions shared across tracecore."""
