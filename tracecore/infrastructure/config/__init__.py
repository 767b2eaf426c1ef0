"""Configuration module."""
from tracecore.infrastructure.config.settings import TracingSettings, get_settings

__all__ = ["TracingSettings", "get_settings"]
