"""Saves resolved update packages to disk."""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import requests

from .constants import CHUNK_SIZE
from .fetcher import Fetcher
from .models import DownloadedPackage, UpdateRecord

logger = logging.getLogger(__name__)

CONTENT_DISPOSITION_FILENAME = re.compile(r'filename\*?=(?:UTF-8\'\')?"?([^";]+)"?', re.IGNORECASE)


def suggested_filename(url: str, content_disposition: Optional[str] = None, fallback: str = "") -> str:
    """Pick a local file name from the response header or the URL path."""
    if content_disposition:
        match = CONTENT_DISPOSITION_FILENAME.search(content_disposition)
        if match:
            return Path(unquote(match.group(1).strip())).name
    name = Path(unquote(urlparse(url).path)).name
    return name or fallback


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _save_one(
    fetcher: Fetcher,
    record: UpdateRecord,
    dest_dir: Path,
    force: bool,
    verify: bool,
) -> DownloadedPackage:
    url = record.download_urls[0]
    package = DownloadedPackage(
        update_id=record.update_id,
        kb_number=record.kb_number,
        title=record.title,
        download_url=url,
    )
    fallback = f"{record.kb_number or record.update_id or 'update'}.cab"

    name = suggested_filename(url, fallback=fallback)
    out_path = dest_dir / name
    if out_path.exists() and not force:
        logger.info("File already exists: %s", out_path)
    else:
        try:
            with fetcher.stream(url) as response:
                name = suggested_filename(url, response.headers.get("Content-Disposition"), fallback)
                out_path = dest_dir / name
                logger.info("Downloading %s -> %s", url, out_path)
                with open(out_path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
        except (requests.RequestException, OSError) as e:
            package.error = f"Download failed: {e}"
            logger.error("Failed to download %s: %s", record.kb_number or record.title, e)
            return package

    package.local_path = str(out_path)
    package.is_downloaded = True
    package.file_size = out_path.stat().st_size

    if verify:
        try:
            package.sha256 = sha256_file(out_path)
            package.is_verified = True
            logger.debug("Verified %s: SHA256 = %s", name, package.sha256)
        except OSError as e:
            package.error = f"Verification failed: {e}"
    return package


def save_packages(
    fetcher: Fetcher,
    records: list[UpdateRecord],
    dest_dir: Path,
    force: bool = False,
    verify: bool = False,
) -> list[DownloadedPackage]:
    """Download the first URL of every record that has one.

    Records without download URLs are skipped with a warning; one failed
    download does not stop the rest.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    packages: list[DownloadedPackage] = []

    downloadable = [r for r in records if r.download_urls]
    for record in records:
        if not record.download_urls:
            logger.warning("No download URLs for %s, skipping", record.kb_number or record.title)

    for i, record in enumerate(downloadable, 1):
        logger.info("[%d/%d] %s", i, len(downloadable), record.title)
        packages.append(_save_one(fetcher, record, dest_dir, force, verify))

    failed = sum(1 for p in packages if not p.is_downloaded)
    logger.info("Downloaded %d of %d packages", len(packages) - failed, len(downloadable))
    if failed:
        logger.warning("%d downloads failed", failed)
    return packages
