"""PageSpeed Insights fetcher package."""

from .fetcher import Fetcher
from .models import (
    FetchSettings,
    PageProbeResult,
    QueueStats,
    QueueStatus,
    RunSummary,
    Strategy,
)
from .processor import BatchOutcome, PsiProcessor
from .queue import IgnoreEntry, QueueItem, QueueStorage

__all__ = [
    "Fetcher",
    "FetchSettings",
    "PageProbeResult",
    "QueueStats",
    "QueueStatus",
    "RunSummary",
    "Strategy",
    "BatchOutcome",
    "PsiProcessor",
    "IgnoreEntry",
    "QueueItem",
    "QueueStorage",
]
