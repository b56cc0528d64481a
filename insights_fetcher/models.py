"""Data models for the insights fetcher."""

import os
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

UNKNOWN_CONTENT_TYPE = "unknown"
NO_RESPONSE_STATUS = -1


class Strategy(str, Enum):
    """Device profile a PSI analysis is run against."""
    DESKTOP = "DESKTOP"
    MOBILE = "MOBILE"


class Category(str, Enum):
    """Lighthouse categories the PSI API can run."""
    ACCESSIBILITY = "ACCESSIBILITY"
    BEST_PRACTICES = "BEST_PRACTICES"
    PERFORMANCE = "PERFORMANCE"
    PWA = "PWA"
    SEO = "SEO"


class QueueStatus(str, Enum):
    """Lifecycle of a queue item."""
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    FETCHED = "FETCHED"
    FAILED = "FAILED"


DEFAULT_CATEGORIES = tuple(Category)
DEFAULT_STRATEGIES = (Strategy.DESKTOP, Strategy.MOBILE)


class PageProbeResult(BaseModel):
    """Status and content type of one URL, from a HEAD probe."""
    url: str
    status: int
    content_type: str = UNKNOWN_CONTENT_TYPE


class QueueItemCreate(BaseModel):
    """Request to enqueue one (url, strategy) pair."""
    url: str
    strategy: Strategy


class QueueStats(BaseModel):
    """Queue statistics."""
    total: int
    queued: int
    processing: int
    fetched: int
    failed: int
    ignored: int


class FieldMetric(BaseModel):
    """A real-user metric from the report's origin loading experience."""
    percentile: Optional[float] = None
    category: Optional[str] = None


class ReportSummary(BaseModel):
    """Key metrics pulled out of a PSI report."""
    id: str
    url: str
    strategy: str
    fetch_time: Optional[str] = None
    lighthouse_version: Optional[str] = None
    performance_score: Optional[float] = None
    accessibility_score: Optional[float] = None
    best_practices_score: Optional[float] = None
    seo_score: Optional[float] = None
    cumulative_layout_shift: Optional[FieldMetric] = None
    first_contentful_paint: Optional[FieldMetric] = None
    first_input_delay: Optional[FieldMetric] = None
    largest_contentful_paint: Optional[FieldMetric] = None


class RunSummary(BaseModel):
    """Counters for one pipeline run."""
    discovered: int = 0
    probed: int = 0
    ignored: int = 0
    enqueued: int = 0
    processed: int = 0
    fetched: int = 0
    failed: int = 0
    stopped: bool = False


class FetchSettings(BaseModel):
    """Settings for a fetch-insights run, usually built from CLI flags."""
    hostname: str
    apikey: str = Field(default_factory=lambda: os.environ.get("PSI_API_KEY", ""), validate_default=True)
    batch_size: int = Field(default=20, ge=1)
    sitemap: str = "/sitemap.xml"
    queue_data_directory: Path = Path("./data")
    max_concurrent_requests: int = Field(default=10, ge=1)
    max_requests_per_second: int = Field(default=40, ge=1)
    request_timeout: int = Field(default=30000, ge=1, description="milliseconds")
    output_dir: Optional[Path] = None
    strategies: list[Strategy] = Field(default_factory=lambda: list(DEFAULT_STRATEGIES))

    @field_validator("hostname")
    @classmethod
    def _add_scheme(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("hostname is required")
        if "://" not in value:
            value = f"https://{value}"
        return value

    @field_validator("apikey")
    @classmethod
    def _require_apikey(cls, value: str) -> str:
        if not value:
            raise ValueError("apikey is required (or set PSI_API_KEY)")
        return value

    @property
    def sitemap_url(self) -> str:
        if self.sitemap.startswith(("http://", "https://")):
            return self.sitemap
        return f"{self.hostname}/{self.sitemap.lstrip('/')}"

    @property
    def timeout_seconds(self) -> float:
        return self.request_timeout / 1000

    def data_directory(self) -> Path:
        return self.queue_data_directory.expanduser().resolve()

    def session_file(self, day: Optional[date] = None) -> Path:
        """Path of the queue database for a day; one session store per day."""
        day = day or date.today()
        return self.data_directory() / f"Psi-Report_{day:%Y-%m-%d}.db"
