"""Failure taxonomy for the ingestion pipeline.

Only :class:`AuthRejected` ever escapes a job; the others are caught at the
orchestration boundary and recorded as per-item results.
"""
from __future__ import annotations


class CourtIQError(Exception):
    """Base class for pipeline errors."""


class SourceUnavailable(CourtIQError):
    """A fetch failed, timed out or returned a non-success status."""

    def __init__(self, source: str, identifier: str):
        super().__init__(f"{source} unavailable for {identifier}")
        self.source = source
        self.identifier = identifier


class ParseMiss(CourtIQError):
    """An extractor found none of the markup it knows how to read."""

    def __init__(self, source: str, identifier: str):
        super().__init__(f"no parseable {source} data for {identifier}")
        self.source = source
        self.identifier = identifier


class PersistenceConflict(CourtIQError):
    """Duplicate key on an append-only series. Expected; callers ignore it."""


class AuthRejected(CourtIQError):
    """The shared cron secret was missing or wrong."""
