"""CLI entry point for the Windows Update Catalog client."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from dataclasses import asdict
from datetime import date
from pathlib import Path

from .catalog import CatalogClient
from .constants import DEFAULT_PAGE_SIZE, DOWNLOAD_WORKERS, REQUEST_TIMEOUT, SORT_EVENT_TARGETS
from .downloader import save_packages
from .exporters.csv_exporter import export_csv
from .exporters.json_exporter import export_json
from .exporters.markdown_exporter import export_markdown
from .exporters.text_exporter import export_text
from .fetcher import Fetcher
from .models import SearchCriteria

logger = logging.getLogger(__name__)


def _date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from None


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Search the Microsoft Update Catalog and resolve download links.",
    )
    parser.add_argument("queries", nargs="+", metavar="QUERY", help="Search text, e.g. a KB number")
    parser.add_argument("--product", help="Product filter passed to the catalog")
    parser.add_argument("--classification", help="Classification filter passed to the catalog")
    parser.add_argument(
        "--arch",
        choices=["x86", "x64", "AMD64", "ARM64"],
        help="Only keep updates for this architecture",
    )
    parser.add_argument("--from", dest="date_from", type=_date, help="Earliest last-updated date (YYYY-MM-DD)")
    parser.add_argument("--to", dest="date_to", type=_date, help="Latest last-updated date (YYYY-MM-DD)")
    parser.add_argument(
        "--sort-by",
        choices=sorted(SORT_EVENT_TARGETS),
        help="Ask the catalog to sort by this column",
    )
    direction = parser.add_mutually_exclusive_group()
    direction.add_argument("--ascending", dest="descending", action="store_false", default=None)
    direction.add_argument("--descending", dest="descending", action="store_true", default=None)
    parser.add_argument("--all-pages", action="store_true", help="Follow the catalog's next-page links")
    parser.add_argument("--include-superseded", action="store_true", help="Keep superseded updates")
    parser.add_argument("--max-results", type=int, default=None, metavar="N", help="Limit merged results")
    parser.add_argument("--page-size", type=int, default=DEFAULT_PAGE_SIZE, help=argparse.SUPPRESS)
    parser.add_argument("--download-urls", action="store_true", help="Resolve CDN download URLs")
    parser.add_argument("--save", type=Path, metavar="DIR", help="Download packages into DIR (implies --download-urls)")
    parser.add_argument("--force", action="store_true", help="Re-download files that already exist")
    parser.add_argument("--verify", action="store_true", help="Compute SHA-256 of saved packages")
    parser.add_argument(
        "--output-dir",
        type=str,
        default="data",
        help="Output directory for generated files (default: data)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=REQUEST_TIMEOUT,
        help=f"Request timeout in seconds (default: {REQUEST_TIMEOUT})",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=DOWNLOAD_WORKERS,
        help=f"Concurrent download-link lookups (default: {DOWNLOAD_WORKERS})",
    )
    parser.add_argument("--trace", type=Path, metavar="FILE", help="Write HTTP trace events as JSON lines")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> int:
    """Main orchestrator. Returns exit code."""
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        criteria = SearchCriteria(
            query=args.queries[0],
            product=args.product,
            classification=args.classification,
            architecture=args.arch,
            date_from=args.date_from,
            date_to=args.date_to,
            sort_by=args.sort_by,
            descending=args.descending,
            page_size=args.page_size,
            include_superseded=args.include_superseded,
            all_pages=args.all_pages,
            include_download_urls=args.download_urls or args.save is not None,
            max_results=args.max_results,
        )
    except ValueError as e:
        logger.error("Invalid search options: %s", e)
        return 2

    trace_file = open(args.trace, "w", encoding="utf-8") if args.trace else None

    trace_lock = threading.Lock()

    def write_trace(event) -> None:
        with trace_lock:
            trace_file.write(json.dumps(asdict(event)) + "\n")

    trace = write_trace if trace_file else None
    fetcher = Fetcher(timeout=args.timeout, trace=trace)

    try:
        with CatalogClient(fetcher=fetcher, max_workers=args.workers, trace=trace) as client:
            if len(args.queries) == 1:
                result = client.search_updates(criteria)
            else:
                result = client.search_many(args.queries, criteria)

            for update in result.updates:
                print(update)
                for url in update.download_urls:
                    print(f"    {url}")

            output_dir = Path(args.output_dir)
            export_text(result, output_dir / "kbs.txt")
            export_csv(result, output_dir / "updates.csv")
            export_json(result, output_dir / "updates.json")
            export_markdown(result, output_dir / "summary.md")
            logger.info("Output written to %s/", output_dir)

            if args.save is not None and result.updates:
                packages = save_packages(client.fetcher, result.updates, args.save, args.force, args.verify)
                for package in packages:
                    if package.error:
                        logger.warning("%s: %s", package.kb_number or package.title, package.error)
    finally:
        if trace_file:
            trace_file.close()

    for warning in result.warnings:
        logger.warning(warning)

    # search_many succeeds on partial failure; the exit code does not
    if not result.success or result.error_message:
        logger.error("Search failed: %s", result.error_message)
        return 1
    return 0


def main() -> None:
    args = parse_args()
    sys.exit(run(args))


if __name__ == "__main__":
    main()
