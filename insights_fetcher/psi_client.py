"""Client for the Google PageSpeed Insights API."""

import logging
from typing import Any, Iterable, Optional, Union

import httpx

from .errors import TransportError, UpstreamError
from .models import DEFAULT_CATEGORIES, Category, Strategy

logger = logging.getLogger(__name__)

PSI_API_URL = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"


class PsiClient:
    """Makes single requests of the PSI API.

    This class does not retry and does not care about rate limits; callers
    handle both.
    """

    def __init__(
        self,
        apikey: str,
        api_url: str = PSI_API_URL,
        client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
    ):
        if not apikey:
            raise ValueError("API Key is required.")
        self.apikey = apikey
        self.api_url = api_url
        self.client = client or httpx.Client(timeout=timeout)

    def fetch(
        self,
        url: str,
        categories: Iterable[Union[Category, str]] = DEFAULT_CATEGORIES,
        strategy: Union[Strategy, str] = Strategy.DESKTOP,
    ) -> dict[str, Any]:
        """Fetch the PSI report for a URL.

        Args:
            url: Page to analyze
            categories: Lighthouse categories to run
            strategy: DESKTOP or MOBILE

        Returns:
            The decoded JSON report
        """
        strategy = Strategy(strategy)
        # A list of tuples repeats the key: category=A&category=B
        params = [("url", url)]
        params.extend(("category", Category(c).value) for c in categories)
        params.append(("strategy", strategy.value))
        params.append(("key", self.apikey))

        try:
            response = self.client.get(self.api_url, params=params)
        except httpx.HTTPError as e:
            logger.error(f"Error fetching {url}: {e}")
            raise TransportError(f"No response fetching {url} ({strategy.value}): {e}") from e

        if not response.is_success:
            logger.error(f"Error fetching {url}: status {response.status_code}")
            raise UpstreamError(
                f"Status {response.status_code} returned for {url} and strategy {strategy.value}",
                status=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Invalid JSON returned for {url} and strategy {strategy.value}",
                status=response.status_code,
            ) from e

    def close(self):
        self.client.close()
