"""Page type classifier: HTTP status and content type via HEAD probes."""

import logging
from typing import Optional, Sequence

import httpx

from .models import NO_RESPONSE_STATUS, UNKNOWN_CONTENT_TYPE, PageProbeResult
from .throttle import AdmissionController, Ok, Result

logger = logging.getLogger(__name__)


class PageTypeClassifier:
    """Probes many URLs for status and content type under a rate limit."""

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        throttle: Optional[AdmissionController] = None,
        timeout: float = 30.0,
    ):
        self.client = client or httpx.Client(timeout=timeout, follow_redirects=False)
        self.throttle = throttle or AdmissionController(
            max_concurrent=5,
            interval=1.0,
            interval_cap=45,
            timeout=timeout,
            name="classifier",
        )

    def get_page_info(self, url: str) -> PageProbeResult:
        """Probe one URL.

        This never raises: every failure is reported in the result.

        Args:
            url: URL to probe

        Returns:
            The URL's status and content type
        """
        logger.debug(f"Fetching info for {url}")
        try:
            response = self.client.head(url, follow_redirects=False)
        except httpx.HTTPError as e:
            logger.error(f"Bad response during fetch page information for {url}: {e}")
            return PageProbeResult(url=url, status=NO_RESPONSE_STATUS)
        except Exception as e:
            logger.error(f"Unexpected error probing {url}: {e}", exc_info=True)
            return PageProbeResult(url=url, status=NO_RESPONSE_STATUS)

        if response.is_success:
            return PageProbeResult(
                url=url,
                status=response.status_code,
                content_type=response.headers.get("content-type", UNKNOWN_CONTENT_TYPE),
            )

        if response.status_code >= 500:
            logger.error(f"ERROR fetching url info {url}: status {response.status_code}")
        return PageProbeResult(url=url, status=response.status_code)

    def fetch(self, urls: Sequence[str]) -> list[PageProbeResult]:
        """Probe every URL.

        Callers should match results to URLs by `url`, not by position.

        Args:
            urls: URLs to probe

        Returns:
            One PageProbeResult per URL
        """
        urls = list(urls)
        tasks = [self._task(url) for url in urls]
        results = self.throttle.run_all(tasks)

        probes = []
        for url, result in zip(urls, results):
            if result.ok:
                probes.append(result.value)
            else:
                logger.error(f"Probe for {url} did not complete: {result.error}")
                probes.append(PageProbeResult(url=url, status=NO_RESPONSE_STATUS))
        logger.info(f"Probed {len(probes)} URLs")
        return probes

    def _task(self, url: str):
        def probe() -> Result:
            return Ok(self.get_page_info(url))
        return probe

    def close(self):
        self.client.close()
