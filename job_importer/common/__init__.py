"""Shared helpers used across the importer packages (settings, database, retry)."""

from .settings import Settings

__all__ = ["Settings"]
