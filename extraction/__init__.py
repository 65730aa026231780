"""
Apartments.com extraction core.

Exposes the workflow that leases a Browserbase session, prepares the search
results page, extracts listing cards and returns normalized, filtered results.
"""

from .errors import BrowserSessionError, ConfigurationError, ExtractionError
from .types import (
    Bedrooms,
    ExtractedListing,
    ExtractionRequest,
    ExtractionResult,
    NormalizedListing,
    RejectedListing,
    RejectionReason,
    SessionHandle,
)
from .workflow import ExtractionWorkflow, perform_apartments_extraction

__all__ = [
    "Bedrooms",
    "BrowserSessionError",
    "ConfigurationError",
    "ExtractedListing",
    "ExtractionError",
    "ExtractionRequest",
    "ExtractionResult",
    "ExtractionWorkflow",
    "NormalizedListing",
    "RejectedListing",
    "RejectionReason",
    "SessionHandle",
    "perform_apartments_extraction",
]
