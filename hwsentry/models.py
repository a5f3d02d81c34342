"""
Scan result types using Pydantic models.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from hwsentry.utils import utcnow

ErrorKind = Literal[
    "timeout",
    "malformed_response",
    "upstream_error",
    "circuit_open",
    "in_progress",
    "unknown",
]


class VendorTarget(BaseModel):
    """One vendor page to scan for a SKU."""

    name: str
    url: str
    goal: str | None = None  # Overrides the default extraction goal
    currency: str = "GBP"


class PriceChange(BaseModel):
    """Price movement between two scans of the same vendor."""

    previous: float
    current: float
    delta: float
    percent_change: float | None = None  # None when previous price is 0
    is_significant: bool


class StockChange(BaseModel):
    """Stock flag movement between two scans of the same vendor."""

    changed: bool
    previous: bool
    current: bool


class VendorChanges(BaseModel):
    price: PriceChange | None = None
    stock: StockChange | None = None


class VendorResult(BaseModel):
    """One vendor's observation within a scan."""

    name: str
    url: str
    price: float | None = None
    currency: str = "GBP"
    in_stock: bool = False
    stock_level: str = "unknown"
    notes: str | None = None
    changes: VendorChanges | None = None


class VendorError(BaseModel):
    """A vendor that failed during a scan."""

    vendor: str
    kind: ErrorKind = "unknown"
    message: str


class ScanResult(BaseModel):
    """One logical scan outcome for a SKU."""

    sku: str
    scanned_at: datetime = Field(default_factory=utcnow)
    vendors: list[VendorResult] = Field(default_factory=list)
    cached: bool = False
    stale: bool = False
    errors: list[VendorError] = Field(default_factory=list)

    @model_validator(mode="after")
    def _cached_and_stale_are_exclusive(self) -> "ScanResult":
        if self.cached and self.stale:
            raise ValueError("a scan result cannot be both cached and stale")
        return self

    @property
    def is_partial(self) -> bool:
        return bool(self.vendors) and bool(self.errors)

    def vendor(self, name: str) -> VendorResult | None:
        for item in self.vendors:
            if item.name == name:
                return item
        return None


class AnalyticsEvent(BaseModel):
    """Outcome of a single scan request, as seen by analytics."""

    sku: str
    success: bool
    cached: bool
    response_time_ms: float
    timestamp: int  # Epoch milliseconds
    vendor_count: int | None = None
    error_message: str | None = None


class PopularSku(BaseModel):
    sku: str
    count: int


class AnalyticsStats(BaseModel):
    """Aggregated analytics for the dashboard."""

    total_scans: int = 0
    successful_scans: int = 0
    failed_scans: int = 0
    success_rate: float = 0.0  # Percent, one decimal
    cache_hit_rate: float = 0.0  # Percent, one decimal
    average_response_time: int = 0  # Milliseconds
    popular_skus: list[PopularSku] = Field(default_factory=list)
    recent_activity: list[AnalyticsEvent] = Field(default_factory=list)
    period: str = "all-time"
