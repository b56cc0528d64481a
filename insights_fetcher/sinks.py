"""Consumers of pipeline results.

A sink is anything with the ResultSink methods; the fetcher calls every
configured sink as the run progresses.
"""

import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Protocol, Sequence, runtime_checkable

from .models import RunSummary
from .queue import QueueItem

logger = logging.getLogger(__name__)


@runtime_checkable
class ResultSink(Protocol):
    def on_begin(self, urls: Sequence[str]) -> None: ...

    def store_result(self, item: QueueItem, report: dict[str, Any]) -> None: ...

    def store_error(self, item: QueueItem, error: BaseException) -> None: ...

    def on_end(self, summary: RunSummary) -> None: ...

    def on_fatal(self, error: BaseException) -> None: ...


class LogSink:
    """Writes run progress to the log only."""

    def on_begin(self, urls: Sequence[str]) -> None:
        logger.info(f"Starting run over {len(urls)} sitemap URLs")

    def store_result(self, item: QueueItem, report: dict[str, Any]) -> None:
        logger.debug(f"Fetched {item.url} ({item.strategy.value})")

    def store_error(self, item: QueueItem, error: BaseException) -> None:
        logger.warning(f"Failed {item.url} ({item.strategy.value}): {error}")

    def on_end(self, summary: RunSummary) -> None:
        logger.info(
            f"Finished: processed {summary.processed}, fetched {summary.fetched}, "
            f"errors {summary.failed}"
        )

    def on_fatal(self, error: BaseException) -> None:
        logger.error(f"Run ended with a fatal error: {error}")


class JsonFileSink:
    """Saves each fetched report as a JSON file in a directory."""

    def __init__(self, output_dir: str = "data/reports"):
        self.output_dir = Path(output_dir)

    def on_begin(self, urls: Sequence[str]) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def report_path(self, item: QueueItem) -> Path:
        slug = re.sub(r"[^A-Za-z0-9]+", "_", item.url).strip("_")[:120]
        return self.output_dir / f"{item.id}_{item.strategy.value.lower()}_{slug}.json"

    def store_result(self, item: QueueItem, report: dict[str, Any]) -> None:
        filepath = self.report_path(item)
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(
                {"id": item.id, "url": item.url, "strategy": item.strategy.value, "report": report},
                f,
                ensure_ascii=False,
            )
        logger.debug(f"Saved report to {filepath}")

    def store_error(self, item: QueueItem, error: BaseException) -> None:
        with open(self.output_dir / "errors.jsonl", "a", encoding="utf-8") as f:
            f.write(json.dumps({
                "id": item.id,
                "url": item.url,
                "strategy": item.strategy.value,
                "error": str(error),
            }) + "\n")

    def on_end(self, summary: RunSummary) -> None:
        self._write_run("done", summary.model_dump())

    def on_fatal(self, error: BaseException) -> None:
        self._write_run("fatal", {"error": str(error)})

    def _write_run(self, state: str, body: dict[str, Any]) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        with open(self.output_dir / "run.json", "w", encoding="utf-8") as f:
            json.dump({"state": state, "finished_at": time.time(), **body}, f, indent=2)
