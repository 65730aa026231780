"""Typed errors raised by the extraction workflow."""

from __future__ import annotations


class ExtractionError(RuntimeError):
    """Base class for extraction workflow failures."""


class ConfigurationError(ExtractionError):
    """A required credential or setting is missing. Never retried."""


class BrowserSessionError(ExtractionError):
    """The remote browser could not be initialized or lost its session."""


__all__ = ["ExtractionError", "ConfigurationError", "BrowserSessionError"]
