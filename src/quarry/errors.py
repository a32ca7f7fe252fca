"""Quarry exception hierarchy.

Pipelines catch these at their boundary and convert them into result objects;
read-side services log them and return empty values.
"""

from __future__ import annotations


class QuarryError(Exception):
    """Base class for all Quarry errors."""


class ConfigError(QuarryError, ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


class EmbeddingError(QuarryError):
    """Raised when the embedding API fails or returns an unexpected payload."""


class ExtractionError(QuarryError):
    """Raised when entity-extraction output does not match the expected schema."""


class VectorIndexUnavailableError(QuarryError):
    """Raised on a vector write while the sqlite-vec extension is not loaded."""


class BackfillAlreadyRunningError(QuarryError):
    """Raised when a backfill is started while another one is still active."""
