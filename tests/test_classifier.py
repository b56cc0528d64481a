"""Tests for the page type classifier."""

import time

import httpx

from insights_fetcher.classifier import PageTypeClassifier
from insights_fetcher.throttle import AdmissionController

RESPONSES = {
    "https://e.org/page": (200, {"content-type": "text/html; charset=utf-8"}),
    "https://e.org/file.pdf": (200, {"content-type": "application/pdf"}),
    "https://e.org/no-type": (200, {}),
    "https://e.org/missing": (404, {"content-type": "text/html"}),
    "https://e.org/moved": (301, {"location": "https://e.org/page"}),
    "https://e.org/broken": (503, {}),
}


def handler(request):
    url = str(request.url)
    if url == "https://e.org/unreachable":
        raise httpx.ConnectError("name resolution failed", request=request)
    assert request.method == "HEAD"
    status, headers = RESPONSES[url]
    return httpx.Response(status, headers=headers)


def make_classifier(**throttle_kwargs):
    throttle_kwargs.setdefault("interval_cap", None)
    return PageTypeClassifier(
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        throttle=AdmissionController(**throttle_kwargs),
    )


def by_url(results):
    return {r.url: r for r in results}


def test_html_page():
    """Test that a 200 keeps its content type."""
    result = make_classifier().get_page_info("https://e.org/page")
    assert result.status == 200
    assert result.content_type == "text/html; charset=utf-8"


def test_404_is_unknown():
    """Test the sentinel content type for a non-2xx response."""
    result = make_classifier().get_page_info("https://e.org/missing")
    assert result.status == 404
    assert result.content_type == "unknown"


def test_redirect_not_followed():
    """Test that redirects are reported, not followed."""
    result = make_classifier().get_page_info("https://e.org/moved")
    assert result.status == 301
    assert result.content_type == "unknown"


def test_no_response_sentinel():
    """Test the sentinel status when nothing comes back."""
    result = make_classifier().get_page_info("https://e.org/unreachable")
    assert result.status == -1
    assert result.content_type == "unknown"


def test_server_error_is_logged(caplog):
    """Test that 5xx responses are logged but still returned as data."""
    result = make_classifier().get_page_info("https://e.org/broken")
    assert result.status == 503
    assert result.content_type == "unknown"
    assert any("https://e.org/broken" in r.message for r in caplog.records)


def test_fetch_many():
    """Test probing a mixed list."""
    urls = list(RESPONSES) + ["https://e.org/unreachable"]

    results = by_url(make_classifier(max_concurrent=3).fetch(urls))

    assert set(results) == set(urls)
    assert results["https://e.org/page"].status == 200
    assert results["https://e.org/file.pdf"].content_type == "application/pdf"
    assert results["https://e.org/no-type"].content_type == "unknown"
    assert results["https://e.org/missing"].status == 404
    assert results["https://e.org/unreachable"].status == -1


def test_slow_probe_times_out_as_no_response():
    """Test that a probe past the task timeout becomes a no-response result."""
    def slow_handler(request):
        time.sleep(0.5)
        return httpx.Response(200, headers={"content-type": "text/html"})

    classifier = PageTypeClassifier(
        client=httpx.Client(transport=httpx.MockTransport(slow_handler)),
        throttle=AdmissionController(interval_cap=None, timeout=0.05),
    )

    results = classifier.fetch(["https://e.org/slow"])

    assert results[0].status == -1
    assert results[0].content_type == "unknown"
