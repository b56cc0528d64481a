"""Command line entry point."""

import argparse
import logging
import signal
import sys
from typing import Optional

import httpx
from pydantic import ValidationError

from . import api, report
from .classifier import PageTypeClassifier
from .errors import FetchAborted, NotFound, StorageFault
from .fetcher import Fetcher
from .models import FetchSettings
from .processor import PSI_INTERVAL, PSI_INTERVAL_CAP, PsiProcessor
from .psi_client import PsiClient
from .queue import QueueStorage
from .sinks import JsonFileSink, LogSink
from .sitemap import SitemapReader
from .throttle import AdmissionController

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_SETUP = 2


def add_fetch_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("-H", "--hostname", required=True, help="Site to crawl, e.g. https://www.example.org")
    parser.add_argument("-k", "--apikey", default=None, help="Google API key (default: $PSI_API_KEY)")
    parser.add_argument(
        "-b",
        "--batch-size",
        type=int,
        default=20,
        help="Items per fetching round; roughly how many reports are held in memory before they are saved",
    )
    parser.add_argument("-s", "--sitemap", default="/sitemap.xml", help="Path (or URL) of the sitemap")
    parser.add_argument("-q", "--queue-data-directory", default="./data", help="Directory for session databases")
    parser.add_argument(
        "-c",
        "--max-concurrent-requests",
        type=int,
        default=10,
        help="Maximum number of concurrent https requests",
    )
    parser.add_argument(
        "-r",
        "--max-requests-per-second",
        type=int,
        default=40,
        help="Maximum number of page probes per second; keep this below any CDN limits for the site",
    )
    parser.add_argument("-t", "--request-timeout", type=int, default=30000, help="Request timeout in ms")
    parser.add_argument("-o", "--output-dir", default=None, help="Also save each report as JSON in this directory")


def build_settings(args: argparse.Namespace) -> FetchSettings:
    values = {
        "hostname": args.hostname,
        "batch_size": args.batch_size,
        "sitemap": args.sitemap,
        "queue_data_directory": args.queue_data_directory,
        "max_concurrent_requests": args.max_concurrent_requests,
        "max_requests_per_second": args.max_requests_per_second,
        "request_timeout": args.request_timeout,
        "output_dir": args.output_dir,
    }
    if args.apikey:
        values["apikey"] = args.apikey
    return FetchSettings(**values)


def build_fetcher(settings: FetchSettings, storage: QueueStorage, client: httpx.Client) -> Fetcher:
    """Wire up the pipeline from settings.

    The page probes and the PSI calls get separate admission controllers
    because they are limited by different quotas.
    """
    timeout = settings.timeout_seconds
    classifier = PageTypeClassifier(
        client=client,
        throttle=AdmissionController(
            max_concurrent=settings.max_concurrent_requests,
            interval=1.0,
            interval_cap=settings.max_requests_per_second,
            timeout=timeout,
            name="classifier",
        ),
    )
    processor = PsiProcessor(
        PsiClient(apikey=settings.apikey, client=client),
        throttle=AdmissionController(
            max_concurrent=settings.max_concurrent_requests,
            interval=PSI_INTERVAL,
            interval_cap=PSI_INTERVAL_CAP,
            timeout=timeout,
            name="psi",
        ),
    )
    sinks = [LogSink()]
    if settings.output_dir:
        sinks.append(JsonFileSink(output_dir=str(settings.output_dir)))

    return Fetcher(
        processor,
        SitemapReader(client=client),
        classifier,
        storage,
        batch_size=settings.batch_size,
        strategies=settings.strategies,
        sinks=sinks,
    )


def run_fetch(args: argparse.Namespace) -> int:
    try:
        settings = build_settings(args)
    except ValidationError as e:
        print(f"Invalid options: {e}", file=sys.stderr)
        return EXIT_SETUP

    data_dir = settings.data_directory()
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Could not create data folder {data_dir}: {e}")
        return EXIT_SETUP

    db_path = settings.session_file()
    try:
        storage = QueueStorage(db_path=str(db_path))
    except StorageFault as e:
        logger.error(str(e))
        return EXIT_SETUP
    logger.info(f"Using session store {db_path}")

    client = httpx.Client(
        timeout=settings.timeout_seconds,
        limits=httpx.Limits(
            max_connections=settings.max_concurrent_requests,
            max_keepalive_connections=settings.max_concurrent_requests,
        ),
    )
    fetcher = build_fetcher(settings, storage, client)

    received: dict[str, Optional[int]] = {"signum": None}

    def handle_signal(signum, frame):
        logger.warning(f"Received signal {signum}")
        received["signum"] = signum
        fetcher.stop()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM, getattr(signal, "SIGHUP", None)):
        if sig is not None:
            previous[sig] = signal.signal(sig, handle_signal)

    try:
        summary = fetcher.run(settings.sitemap_url)
    except FetchAborted as e:
        print(f"FATAL: {e}", file=sys.stderr)
        return EXIT_FATAL
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        storage.close()
        client.close()

    print(
        f"Processed {summary.processed} items: "
        f"{summary.fetched} fetched, {summary.failed} errors "
        f"({summary.ignored} URLs ignored, {summary.enqueued} items enqueued)"
    )
    if received["signum"] is not None:
        return 128 + received["signum"]
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="insights-fetcher",
        description="Fetch PageSpeed Insights reports for every page in a site's sitemap.xml",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch = subparsers.add_parser(
        "fetch-insights",
        help="Crawl the sitemap and fetch PSI reports into the day's session store",
    )
    add_fetch_arguments(fetch)
    fetch.set_defaults(func=run_fetch)

    show = subparsers.add_parser("report", help="Print the items and scores in a session store")
    report.add_arguments(show)
    show.set_defaults(func=report.run)

    serve = subparsers.add_parser("serve", help="Serve a read-only API over a session store")
    api.add_arguments(serve)
    serve.set_defaults(func=api.run)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        return args.func(args)
    except NotFound as e:
        logger.error(str(e))
        return EXIT_SETUP


if __name__ == "__main__":
    sys.exit(main())
