"""Data model shared by the extraction workflow and its collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

LISTING_SOURCE = "apartments.com"
MAX_EXTRACTED_LISTINGS = 50
DEFAULT_RESULT_LIMIT = 3
MAX_RESULT_LIMIT = 25


@dataclass(frozen=True)
class Bedrooms:
    """Bedroom filter. A studio is a zero-bedroom unit and compares equal to ``Bedrooms(0)``."""

    count: int

    def __post_init__(self) -> None:
        if self.count < 0:
            raise ValueError("Bedroom count must be zero or positive.")

    @classmethod
    def studio(cls) -> "Bedrooms":
        return cls(0)

    @property
    def is_studio(self) -> bool:
        return self.count == 0

    @classmethod
    def parse(cls, value: Union["Bedrooms", str, int, None]) -> Optional["Bedrooms"]:
        """Accept ``"studio"``, a non-negative integer, or a digit string."""
        if value is None or isinstance(value, Bedrooms):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Unsupported bedroom value: {value!r}")
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            text = value.strip().lower()
            if text == "studio":
                return cls.studio()
            if text.isdigit():
                return cls(int(text))
        raise ValueError(f"Unsupported bedroom value: {value!r}")

    def label(self) -> str:
        return "Studio" if self.is_studio else f"{self.count} BR"

    def tag(self) -> str:
        return "studio" if self.is_studio else f"{self.count}br"


class ExtractedListing(BaseModel):
    """One listing card as returned by the schema-constrained extraction call."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str = Field(min_length=1)
    price: str = Field(min_length=1, description="Displayed monthly price text")
    address: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")

    @field_validator("address", "image_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ExtractionPayload(BaseModel):
    """Schema handed to the browser extraction call."""

    listings: List[ExtractedListing] = Field(default_factory=list, max_length=MAX_EXTRACTED_LISTINGS)


class NormalizedListing(BaseModel):
    title: str
    address: Optional[str] = None
    price: int = 0
    price_raw: str = ""
    beds: Optional[int] = None
    image_url: Optional[str] = None
    source: str = LISTING_SOURCE


@dataclass(frozen=True)
class RejectionReason:
    type: Literal["price", "location", "bedrooms"]
    detail: str


@dataclass
class RejectedListing:
    listing: NormalizedListing
    reasons: List[RejectionReason]


@dataclass
class ExtractionRequest:
    """Input to one extraction run."""

    query: Optional[str] = None
    location_slug: Optional[str] = None
    max_price: Optional[int] = None
    bedrooms: Optional[Bedrooms] = None
    pets: Optional[bool] = None
    limit: int = DEFAULT_RESULT_LIMIT
    thread_id: Optional[str] = None
    run_id: Optional[str] = None

    def __post_init__(self) -> None:
        self.bedrooms = Bedrooms.parse(self.bedrooms)
        if self.limit is None:
            self.limit = DEFAULT_RESULT_LIMIT
        if not 1 <= int(self.limit) <= MAX_RESULT_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_RESULT_LIMIT}")
        self.limit = int(self.limit)
        if self.max_price is not None and self.max_price <= 0:
            raise ValueError("max_price must be a positive integer")


class ExtractionResult(BaseModel):
    live_view_url: str
    session_id: Optional[str] = None
    debug_url: Optional[str] = None
    listings: List[NormalizedListing] = Field(default_factory=list)
    extracted_count: int = 0
    filtered_count: int = 0
    rejected_count: int = 0
    logs: List[str] = Field(default_factory=list)


@dataclass
class BrowserSessionInfo:
    """What the remote browser reports once it is initialized."""

    session_id: Optional[str]
    live_view_url: Optional[str] = None
    debug_url: Optional[str] = None


@dataclass
class SessionHandle:
    """A leased pooled browser session. ``record_id`` is unset for fresh sessions."""

    record_id: Optional[str] = None
    session_id: Optional[str] = None
    reused: bool = False
