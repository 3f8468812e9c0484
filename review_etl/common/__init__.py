"""Shared helpers used across review-etl services."""

from .retry import retry_with_backoff
from .settings import IngestionSettings, load_settings

__all__ = ["IngestionSettings", "load_settings", "retry_with_backoff"]
