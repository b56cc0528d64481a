"""Tests for the PSI batch processor."""

import time

import pytest

from insights_fetcher.errors import TaskTimeout, UpstreamError
from insights_fetcher.processor import PsiProcessor
from insights_fetcher.queue import QueueItem
from insights_fetcher.throttle import AdmissionController


class FakePsiClient:
    """Stands in for PsiClient; fails for the URL/strategy pairs it is told to."""

    def __init__(self, fail=(), delay=0.0):
        self.fail = set(fail)
        self.delay = delay
        self.calls = []

    def fetch(self, url, categories=(), strategy="DESKTOP"):
        self.calls.append((url, strategy.value))
        if self.delay:
            time.sleep(self.delay)
        if (url, strategy.value) in self.fail:
            raise UpstreamError(f"Status 500 returned for {url} and strategy {strategy.value}", status=500)
        return {"a": "1"}


def make_items():
    return [
        QueueItem(id=1, url="https://example.org/item1", strategy="DESKTOP"),
        QueueItem(id=2, url="https://example.org/item1", strategy="MOBILE"),
        QueueItem(id=3, url="https://example.org/item2", strategy="DESKTOP"),
        QueueItem(id=4, url="https://example.org/item2", strategy="MOBILE"),
    ]


def unthrottled():
    return AdmissionController(max_concurrent=4, interval_cap=None, timeout=5)


def test_process_group_all_succeed():
    """Test a batch where every fetch works."""
    items = make_items()
    processor = PsiProcessor(FakePsiClient(), throttle=unthrottled())

    outcome = processor.process_group(items)

    assert [s.item.id for s in outcome.successes] == [1, 2, 3, 4]
    assert all(s.report == {"a": "1"} for s in outcome.successes)
    assert outcome.failures == []


def test_process_group_with_errors():
    """Test that one failing item does not abort the batch."""
    items = make_items()
    client = FakePsiClient(fail={("https://example.org/item1", "MOBILE")})
    processor = PsiProcessor(client, throttle=unthrottled())

    outcome = processor.process_group(items)

    assert [s.item.id for s in outcome.successes] == [1, 3, 4]
    assert len(outcome.failures) == 1
    assert outcome.failures[0].item.id == 2
    assert isinstance(outcome.failures[0].error, UpstreamError)
    assert len(client.calls) == 4


@pytest.mark.parametrize("size", [0, 1, 5, 13])
def test_outcome_accounts_for_every_item(size):
    """Test that successes plus failures always equals the batch size."""
    items = [
        QueueItem(id=i, url=f"https://example.org/{i}", strategy="DESKTOP")
        for i in range(size)
    ]
    fail = {(f"https://example.org/{i}", "DESKTOP") for i in range(0, size, 3)}
    processor = PsiProcessor(FakePsiClient(fail=fail), throttle=unthrottled())

    outcome = processor.process_group(items)

    assert len(outcome.successes) + len(outcome.failures) == size
    assert len(outcome) == size
    ids = sorted([s.item.id for s in outcome.successes] + [f.item.id for f in outcome.failures])
    assert ids == list(range(size))


def test_unexpected_exception_is_a_failure():
    """Test that even non-HTTP errors are contained."""
    class BrokenClient:
        def fetch(self, url, categories=(), strategy="DESKTOP"):
            raise KeyError("surprise")

    processor = PsiProcessor(BrokenClient(), throttle=unthrottled())
    outcome = processor.process_group(make_items())

    assert outcome.successes == []
    assert len(outcome.failures) == 4


def test_slow_fetch_times_out():
    """Test that a fetch past the timeout is recorded as a failure."""
    processor = PsiProcessor(
        FakePsiClient(delay=0.5),
        throttle=AdmissionController(max_concurrent=4, interval_cap=None, timeout=0.05),
    )

    outcome = processor.process_group(make_items()[:2])

    assert outcome.successes == []
    assert all(isinstance(f.error, TaskTimeout) for f in outcome.failures)


def test_items_behind_a_timeout_are_still_fetched():
    """Test that only the slow item fails when the pool is saturated by it."""
    class SlowFirstClient(FakePsiClient):
        def fetch(self, url, categories=(), strategy="DESKTOP"):
            if url.endswith("/slow"):
                self.calls.append((url, strategy.value))
                time.sleep(0.6)
                return {"a": "1"}
            return super().fetch(url, categories, strategy)

    client = SlowFirstClient()
    items = [
        QueueItem(id=1, url="https://e.org/slow", strategy="DESKTOP"),
        QueueItem(id=2, url="https://e.org/b", strategy="DESKTOP"),
        QueueItem(id=3, url="https://e.org/c", strategy="DESKTOP"),
    ]
    processor = PsiProcessor(
        client,
        throttle=AdmissionController(max_concurrent=1, interval_cap=None, timeout=0.2),
    )

    outcome = processor.process_group(items)

    assert [f.item.id for f in outcome.failures] == [1]
    assert isinstance(outcome.failures[0].error, TaskTimeout)
    assert [s.item.id for s in outcome.successes] == [2, 3]
    assert [url for url, _ in client.calls] == ["https://e.org/slow", "https://e.org/b", "https://e.org/c"]


def test_rate_limit_applies():
    """Test that a capped processor is slower than an unbounded one."""
    items = [
        QueueItem(id=i, url=f"https://example.org/{i}", strategy="DESKTOP")
        for i in range(8)
    ]

    start = time.monotonic()
    PsiProcessor(FakePsiClient(), throttle=unthrottled()).process_group(items)
    unbounded = time.monotonic() - start

    capped = AdmissionController(max_concurrent=8, interval=0.2, interval_cap=2, timeout=5)
    start = time.monotonic()
    PsiProcessor(FakePsiClient(), throttle=capped).process_group(items)
    throttled = time.monotonic() - start

    assert throttled > unbounded + 0.2


def test_client_required():
    """Test that a processor needs a client."""
    with pytest.raises(ValueError):
        PsiProcessor(None)
