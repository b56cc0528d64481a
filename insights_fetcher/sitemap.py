"""Sitemap reader."""

import logging
from typing import Optional, Union

import httpx
from bs4 import BeautifulSoup

from .errors import FormatError, TransportError, UpstreamError

logger = logging.getLogger(__name__)


class SitemapReader:
    """Fetches a sitemap.xml and flattens it into a list of page URLs.

    Only plain <urlset> sitemaps are supported; sitemap indexes are rejected.
    """

    def __init__(self, client: Optional[httpx.Client] = None, timeout: float = 30.0):
        self.client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def get_sitemap(self, sitemap_url: str) -> bytes:
        """Download the sitemap document.

        Args:
            sitemap_url: URL of the sitemap

        Returns:
            The raw XML document
        """
        try:
            response = self.client.get(sitemap_url, follow_redirects=True)
        except httpx.HTTPError as e:
            logger.error(f"Error fetching {sitemap_url}: {e}")
            raise TransportError(f"No response fetching sitemap {sitemap_url}: {e}") from e

        if not response.is_success:
            logger.error(f"Error fetching {sitemap_url}: status {response.status_code}")
            raise UpstreamError(
                f"Unexpected Status {response.status_code} returned for {sitemap_url}",
                status=response.status_code,
            )
        return response.content

    def parse(self, xml: Union[bytes, str], sitemap_url: str = "") -> list[str]:
        """Extract the <loc> of every <url> in a <urlset>."""
        soup = BeautifulSoup(xml, "xml")

        if soup.find("sitemapindex") is not None:
            raise FormatError(f"Unsupported sitemap, {sitemap_url}, it is a sitemap index")

        urlset = soup.find("urlset")
        if urlset is None:
            raise FormatError(f"Unsupported sitemap, {sitemap_url}, no <urlset> element")

        urls = []
        for url in urlset.find_all("url", recursive=False):
            loc = url.find("loc")
            if loc is None:
                continue
            text = loc.get_text(strip=True)
            if text:
                urls.append(text)
        return urls

    def fetch(self, sitemap_url: str) -> list[str]:
        """Fetch a sitemap and return the page URLs in document order.

        Args:
            sitemap_url: URL of the sitemap
        """
        if not sitemap_url:
            raise ValueError("Sitemap URL is required to fetch a sitemap")

        xml = self.get_sitemap(sitemap_url)
        urls = self.parse(xml, sitemap_url)
        logger.info(f"Found {len(urls)} URLs in {sitemap_url}")
        return urls

    def close(self):
        self.client.close()
