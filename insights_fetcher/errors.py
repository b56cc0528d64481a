"""Exception hierarchy for the insights fetcher."""

from typing import Optional


class InsightsFetcherError(Exception):
    """Base class for all errors raised by this package."""


class TransportError(InsightsFetcherError):
    """No response was received (DNS, connect, read timeout...)."""


class UpstreamError(InsightsFetcherError):
    """A response was received but it was not a success."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class FormatError(InsightsFetcherError):
    """A document could not be parsed into the expected shape."""


class StorageFault(InsightsFetcherError):
    """The queue database could not complete a read or write."""


class NotFound(InsightsFetcherError):
    """A queue item id does not exist."""


class InvalidArgument(InsightsFetcherError):
    """A store method was called with a missing or bad argument."""


class Closed(InsightsFetcherError):
    """The queue store was used after close()."""


class TaskTimeout(InsightsFetcherError):
    """A throttled task did not finish within its timeout."""


class FetchAborted(InsightsFetcherError):
    """The pipeline hit a fatal error. The store is left as-is."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
