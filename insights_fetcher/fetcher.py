"""The main fetch pipeline: sitemap -> classify -> enqueue -> throttled PSI fetch."""

import logging
import re
from typing import Iterable, Iterator, Optional, Sequence

from .classifier import PageTypeClassifier
from .errors import FetchAborted
from .models import (
    DEFAULT_STRATEGIES,
    PageProbeResult,
    QueueItemCreate,
    QueueStatus,
    RunSummary,
    Strategy,
)
from .processor import BatchOutcome, PsiProcessor
from .queue import QueueItem, QueueStorage
from .sinks import ResultSink
from .sitemap import SitemapReader

logger = logging.getLogger(__name__)

VALID_CONTENT_TYPE = re.compile(r"^text/html", re.IGNORECASE)


class Fetcher:
    """Drives one crawl session against a session store.

    Re-running against a store that already has progress skips every URL
    that is already queued or ignored, so an interrupted run can simply be
    started again.
    """

    def __init__(
        self,
        processor: PsiProcessor,
        sitemap_reader: SitemapReader,
        classifier: PageTypeClassifier,
        storage: QueueStorage,
        batch_size: int = 20,
        strategies: Iterable[Strategy] = DEFAULT_STRATEGIES,
        sinks: Sequence[ResultSink] = (),
        requeue_stale: bool = True,
    ):
        if processor is None:
            raise ValueError("Must supply a valid PageSpeed Insights processor.")
        if sitemap_reader is None:
            raise ValueError("You must supply a valid sitemap reader.")
        if classifier is None:
            raise ValueError("You must supply a valid page type classifier.")
        if storage is None:
            raise ValueError("You must supply a valid queue storage.")
        if batch_size < 1:
            raise ValueError("Batch size must be at least 1.")

        self.processor = processor
        self.sitemap_reader = sitemap_reader
        self.classifier = classifier
        self.storage = storage
        self.batch_size = batch_size
        self.strategies = [Strategy(s) for s in strategies]
        self.sinks = list(sinks)
        self.requeue_stale = requeue_stale
        self.running = False

    def stop(self):
        """Stop after the batch in flight; safe to call from a signal handler."""
        if self.running:
            logger.info("Stop requested, finishing the current batch")
        self.running = False

    def discover(self, sitemap_url: str) -> list[str]:
        """Fetch the sitemap URLs. Any failure here is fatal."""
        try:
            return self.sitemap_reader.fetch(sitemap_url)
        except Exception as e:
            logger.error(f"Could not fetch sitemap {sitemap_url}")
            raise FetchAborted(f"Could not fetch sitemap {sitemap_url}: {e}", cause=e) from e

    def dedup(self, urls: Sequence[str]) -> list[str]:
        """Drop URLs already in the queue or on the ignore list.

        Args:
            urls: Candidate URLs from the sitemap

        Returns:
            Unseen URLs, first occurrence order
        """
        known = {item.url for item in self.storage.all_items()}
        known.update(entry.url for entry in self.storage.ignore_entries())

        fresh = []
        for url in urls:
            if url in known:
                continue
            known.add(url)
            fresh.append(url)
        logger.info(f"{len(fresh)} of {len(urls)} sitemap URLs are new to this session")
        return fresh

    def triage(
        self, probes: Iterable[PageProbeResult]
    ) -> tuple[list[PageProbeResult], list[QueueItemCreate]]:
        """Split probe results into ignore entries and work items.

        Only 200 responses with an HTML content type are analyzed; each of
        those becomes one work item per strategy.

        Returns:
            (probes to ignore, items to enqueue)
        """
        ignored = []
        to_enqueue = []
        for probe in probes:
            if probe.status != 200 or not VALID_CONTENT_TYPE.match(probe.content_type):
                ignored.append(probe)
                continue
            to_enqueue.extend(
                QueueItemCreate(url=probe.url, strategy=strategy) for strategy in self.strategies
            )
        return ignored, to_enqueue

    def prepare(self, urls: Sequence[str], summary: RunSummary):
        """Classify new URLs and record them as ignored or queued."""
        fresh = self.dedup(urls)
        probes = self.classifier.fetch(fresh) if fresh else []
        summary.probed = len(probes)

        ignored, to_enqueue = self.triage(probes)
        if ignored:
            self.storage.add_ignore_entries(ignored)
        if to_enqueue:
            self.storage.enqueue(to_enqueue)
        summary.ignored = len(ignored)
        summary.enqueued = len(to_enqueue)
        logger.info(f"Ignored {len(ignored)} URLs, enqueued {len(to_enqueue)} items")

    def process_batch_group(self, batch: Sequence[QueueItem]) -> BatchOutcome:
        """Fetch one batch and record every outcome in the store.

        Items are marked PROCESSING before any request is made, so a killed
        run leaves claimed-but-unfinished work distinguishable from work that
        was never attempted.
        """
        for item in batch:
            self.storage.update_status(item.id, QueueStatus.PROCESSING)

        outcome = self.processor.process_group(batch)

        for success in outcome.successes:
            self.storage.update_status(success.item.id, QueueStatus.FETCHED, None, success.report)
            for sink in self.sinks:
                sink.store_result(success.item, success.report)

        for failure in outcome.failures:
            # FAILED is terminal; nothing is requeued on error.
            self.storage.update_status(failure.item.id, QueueStatus.FAILED, str(failure.error), None)
            for sink in self.sinks:
                sink.store_error(failure.item, failure.error)

        return outcome

    def queue_batches(self, summary: Optional[RunSummary] = None) -> Iterator[int]:
        """Drain the queue one batch at a time.

        Yields:
            Number of items processed in each batch
        """
        summary = summary or RunSummary()
        while self.running:
            batch = self.storage.next_batch(QueueStatus.QUEUED, self.batch_size)
            if not batch:
                break

            outcome = self.process_batch_group(batch)
            summary.processed += len(batch)
            summary.fetched += len(outcome.successes)
            summary.failed += len(outcome.failures)
            yield len(batch)

    def run(self, sitemap_url: str) -> RunSummary:
        """Run the whole pipeline for a sitemap.

        Args:
            sitemap_url: URL of the site's sitemap.xml

        Returns:
            Counters for this run
        """
        summary = RunSummary()
        self.running = True
        try:
            urls = self.discover(sitemap_url)
            summary.discovered = len(urls)
            for sink in self.sinks:
                sink.on_begin(urls)

            self.prepare(urls, summary)

            if self.requeue_stale:
                stale = self.storage.requeue(QueueStatus.PROCESSING, QueueStatus.QUEUED)
                if stale:
                    logger.warning(f"Requeued {stale} items left in PROCESSING by an earlier run")

            for processed in self.queue_batches(summary):
                logger.info(
                    f"Processed {processed} items "
                    f"({summary.fetched} fetched, {summary.failed} failed so far)"
                )

            summary.stopped = not self.running
            self.running = False
            for sink in self.sinks:
                sink.on_end(summary)
        except Exception as e:
            self.running = False
            for sink in self.sinks:
                try:
                    sink.on_fatal(e)
                except Exception as sink_error:
                    logger.error(f"Sink {type(sink).__name__} could not record the fatal error: {sink_error}")
            if isinstance(e, FetchAborted):
                raise
            logger.error(f"Fatal error during run: {e}", exc_info=True)
            raise FetchAborted(f"Run aborted: {e}", cause=e) from e

        return summary
