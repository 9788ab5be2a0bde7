"""Resolution of update ids to CDN download URLs via DownloadDialog.aspx."""

from __future__ import annotations

import concurrent.futures
import json
import logging
from dataclasses import replace
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from .constants import CDN_URL_PATTERN, DOWNLOAD_DIALOG_PATH, DOWNLOAD_WORKERS, SCRIPT_URL_PATTERN
from .fetcher import Fetcher
from .models import UpdateRecord

logger = logging.getLogger(__name__)


def build_download_form(update_id: str) -> dict[str, str]:
    """The dialog expects a JSON array in the updateIDs form field."""
    payload = [{"size": 0, "updateID": update_id, "sku": ""}]
    return {"updateIDs": json.dumps(payload, separators=(",", ":"))}


def _is_absolute_http(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _unique(urls: list[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for url in urls:
        url = url.strip()
        if url and _is_absolute_http(url) and url not in seen:
            seen.add(url)
            out.append(url)
    return out


def _from_script_literals(html: str) -> list[str]:
    return _unique(SCRIPT_URL_PATTERN.findall(html))


def _from_cdn_domains(html: str) -> list[str]:
    cleaned = html.replace("www.download.windowsupdate", "download.windowsupdate")
    return _unique(CDN_URL_PATTERN.findall(cleaned))


def _from_anchors(html: str) -> list[str]:
    soup = BeautifulSoup(html, "html.parser")
    return _unique([a["href"] for a in soup.find_all("a", href=True)])


EXTRACTION_STRATEGIES = (
    ("script literal", _from_script_literals),
    ("CDN domain", _from_cdn_domains),
    ("anchor scan", _from_anchors),
)


def extract_download_urls(html: str) -> list[str]:
    """Extract package URLs, trying each strategy until one finds something."""
    for name, strategy in EXTRACTION_STRATEGIES:
        urls = strategy(html)
        if urls:
            logger.debug("Found %d URLs with %s strategy", len(urls), name)
            return urls
    return []


def resolve_download_urls(fetcher: Fetcher, base_url: str, update_id: str) -> tuple[list[str], str | None]:
    """Return (urls, error) for one update id.

    Zero URLs without a transport error is not an error; the caller decides.
    """
    url = base_url.rstrip("/") + DOWNLOAD_DIALOG_PATH
    response = fetcher.request(url, "POST", form=build_download_form(update_id))
    if not response.success:
        return [], response.error

    urls = extract_download_urls(response.html)
    logger.info("Found %d download URLs for update %s", len(urls), update_id)
    return urls, None


def resolve_many(
    fetcher: Fetcher,
    base_url: str,
    records: list[UpdateRecord],
    max_workers: int = DOWNLOAD_WORKERS,
) -> tuple[list[UpdateRecord], list[str]]:
    """Resolve URLs for every record with a bounded worker pool.

    Returns new records in the input order plus the warnings raised along
    the way. Failures never abort the batch.
    """
    resolved = list(records)
    warnings: list[str] = []

    pending = [(i, r) for i, r in enumerate(records) if r.update_id]
    for i, record in enumerate(records):
        if not record.update_id:
            message = f"No update id for '{record.title}', download URLs not resolved"
            resolved[i] = replace(record, warnings=record.warnings + [message])
            warnings.append(message)

    if not pending:
        return resolved, warnings

    workers = max(1, min(max_workers, len(pending)))
    logger.info("Resolving download URLs for %d updates (%d workers)", len(pending), workers)

    failures: list[tuple[int, str]] = []
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {
            pool.submit(resolve_download_urls, fetcher, base_url, record.update_id): (i, record)
            for i, record in pending
        }
        for future in concurrent.futures.as_completed(futures):
            i, record = futures[future]
            try:
                urls, error = future.result()
            except Exception as e:
                urls, error = [], f"{type(e).__name__}: {e}"

            record_warnings = list(record.warnings)
            if error:
                message = f"Failed to get download URLs for update {record.update_id}: {error}"
                record_warnings.append(message)
                failures.append((i, message))
            elif not urls:
                message = f"No download URLs found for update {record.update_id}"
                record_warnings.append(message)
                failures.append((i, message))

            resolved[i] = replace(record, download_urls=urls, warnings=record_warnings)

    warnings.extend(message for _, message in sorted(failures))
    for warning in warnings:
        logger.warning(warning)
    return resolved, warnings
