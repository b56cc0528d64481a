"""Batch processing of PSI requests, throttled to the API quota."""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence, Union

from .models import DEFAULT_CATEGORIES, Category
from .psi_client import PsiClient
from .queue import QueueItem
from .throttle import AdmissionController, Err, Ok, Result

logger = logging.getLogger(__name__)

# PSI allows 400 requests / 100 seconds and 25,000 requests / day. PSI also
# hits the site being analyzed, so lower these if the site cannot take it.
PSI_MAX_CONCURRENT = 5
PSI_INTERVAL = 100.0
PSI_INTERVAL_CAP = 400
PSI_TIMEOUT = 30.0


@dataclass
class FetchSuccess:
    item: QueueItem
    report: dict[str, Any]


@dataclass
class FetchFailure:
    item: QueueItem
    error: BaseException


@dataclass
class BatchOutcome:
    """Per-item outcome of one batch. Every input item is in exactly one list."""
    successes: list[FetchSuccess] = field(default_factory=list)
    failures: list[FetchFailure] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.successes) + len(self.failures)


class PsiProcessor:
    """Runs groups of queue items through the PSI client under the PSI quota."""

    def __init__(
        self,
        client: PsiClient,
        throttle: Optional[AdmissionController] = None,
        categories: Iterable[Union[Category, str]] = DEFAULT_CATEGORIES,
    ):
        if client is None:
            raise ValueError("PSI client is required.")
        self.client = client
        self.categories = tuple(categories)
        self.throttle = throttle or AdmissionController(
            max_concurrent=PSI_MAX_CONCURRENT,
            interval=PSI_INTERVAL,
            interval_cap=PSI_INTERVAL_CAP,
            timeout=PSI_TIMEOUT,
            name="psi",
        )

    def process_group(self, items: Sequence[QueueItem]) -> BatchOutcome:
        """Fetch reports for a group of items.

        Never raises for a single item: failures are collected instead, and
        the method returns only once every item has resolved.

        Args:
            items: Queue items to fetch

        Returns:
            BatchOutcome with one entry per item
        """
        items = list(items)
        results = self.throttle.run_all([self._task(item) for item in items])

        outcome = BatchOutcome()
        for item, result in zip(items, results):
            if result.ok:
                outcome.successes.append(FetchSuccess(item=item, report=result.value))
            else:
                outcome.failures.append(FetchFailure(item=item, error=result.error))
        return outcome

    def _task(self, item: QueueItem):
        def fetch() -> Result:
            try:
                return Ok(self.client.fetch(item.url, categories=self.categories, strategy=item.strategy))
            except Exception as e:
                logger.warning(f"Fetch failed for item {item.id} ({item.url}, {item.strategy.value}): {e}")
                return Err(e)
        return fetch
