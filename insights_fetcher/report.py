"""Key-metric summaries of stored PSI reports, and a console listing."""

import argparse
import logging
from typing import Any, Optional

from .models import FieldMetric, QueueStatus, ReportSummary
from .queue import QueueItem, QueueStorage

logger = logging.getLogger(__name__)

CATEGORY_SCORES = {
    "performance_score": "performance",
    "accessibility_score": "accessibility",
    "best_practices_score": "best-practices",
    "seo_score": "seo",
}

FIELD_METRICS = {
    "cumulative_layout_shift": "CUMULATIVE_LAYOUT_SHIFT_SCORE",
    "first_contentful_paint": "FIRST_CONTENTFUL_PAINT_MS",
    "first_input_delay": "FIRST_INPUT_DELAY_MS",
    "largest_contentful_paint": "LARGEST_CONTENTFUL_PAINT_MS",
}


def _score(categories: dict[str, Any], key: str) -> Optional[float]:
    score = (categories.get(key) or {}).get("score")
    if score is None:
        return None
    return round(score * 100, 1)


def _field_metric(metrics: dict[str, Any], key: str) -> Optional[FieldMetric]:
    metric = metrics.get(key)
    if not metric:
        return None
    return FieldMetric(percentile=metric.get("percentile"), category=metric.get("category"))


def summarize_report(item: QueueItem) -> ReportSummary:
    """Pull the headline numbers out of an item's report.

    The report is stored as-is, so any field may be missing. Field metrics
    are only present when the origin has enough real-user data.
    """
    report = item.report or {}
    lighthouse = report.get("lighthouseResult") or {}
    categories = lighthouse.get("categories") or {}
    origin = report.get("originLoadingExperience") or {}
    metrics = origin.get("metrics") or {}

    return ReportSummary(
        id=f"{item.url}___{item.strategy.value}",
        url=item.url,
        strategy=item.strategy.value,
        fetch_time=lighthouse.get("fetchTime"),
        lighthouse_version=lighthouse.get("lighthouseVersion"),
        **{field: _score(categories, key) for field, key in CATEGORY_SCORES.items()},
        **{field: _field_metric(metrics, key) for field, key in FIELD_METRICS.items()},
    )


def _fmt(score: Optional[float]) -> str:
    return "-" if score is None else f"{score:g}"


class SessionReport:
    """Prints the contents of a session store."""

    def __init__(self, storage: QueueStorage):
        self.storage = storage

    def display(self, status: Optional[str] = None, limit: Optional[int] = None):
        """Print every item with its scores or error, then the totals."""
        items = self.storage.all_items(status=status, limit=limit, include_report=True)

        if not items:
            logger.info("No items in queue")

        print("\n" + "=" * 100)
        print(f"{'ID':<6} {'Strategy':<9} {'Status':<11} {'Perf':>5} {'A11y':>5} {'BP':>5} {'SEO':>5}  URL")
        print("=" * 100)

        for item in items:
            display_url = item.url[:47] + "..." if len(item.url) > 50 else item.url
            if item.status == QueueStatus.FETCHED:
                s = summarize_report(item)
                scores = (
                    f"{_fmt(s.performance_score):>5} {_fmt(s.accessibility_score):>5} "
                    f"{_fmt(s.best_practices_score):>5} {_fmt(s.seo_score):>5}"
                )
            else:
                scores = f"{'':>5} {'':>5} {'':>5} {'':>5}"
            print(f"{item.id:<6} {item.strategy.value:<9} {item.status.value:<11} {scores}  {display_url}")
            if item.error_message:
                print(f"{'':<6} error: {item.error_message}")

        stats = self.storage.get_stats()
        print("=" * 100)
        print(f"\nSummary:")
        print(f"  Total items:  {stats.total}")
        print(f"  Queued:       {stats.queued}")
        print(f"  Processing:   {stats.processing}")
        print(f"  Fetched:      {stats.fetched}")
        print(f"  Failed:       {stats.failed}")
        print(f"  Ignored URLs: {stats.ignored}")
        print()


def add_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("--db", required=True, help="Path to the session database")
    parser.add_argument(
        "--status",
        choices=[s.value for s in QueueStatus],
        help="Only show items with this status",
    )
    parser.add_argument("--limit", type=int, help="Maximum number of items to show")


def run(args: argparse.Namespace) -> int:
    with QueueStorage(db_path=args.db, create=False) as storage:
        SessionReport(storage).display(status=args.status, limit=args.limit)
    return 0
