"""Módulo de observabilidade: bootstrap do tracing."""
from tracecore.observability.tracing import setup_tracing, instrument_app

__all__ = [
    "setup_tracing",
    "instrument_app",
]
