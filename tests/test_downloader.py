import contextlib
import hashlib

import requests

from wucatalog.downloader import save_packages, suggested_filename
from wucatalog.models import UpdateRecord

URL = "https://catalog.s.download.windowsupdate.com/c/msdownload/update/software/secu/2024/03/windows11.0-kb5035853-x64.msu"
PAYLOAD = b"MSCF" + b"\x00" * 2048


class _StreamResponse:
    def __init__(self, body, headers=None):
        self.body = body
        self.headers = headers or {}

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.body), chunk_size):
            yield self.body[i:i + chunk_size]


class StreamingFetcher:
    def __init__(self, body=PAYLOAD, headers=None, error=None):
        self.body = body
        self.headers = headers
        self.error = error
        self.urls = []

    @contextlib.contextmanager
    def stream(self, url):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        yield _StreamResponse(self.body, self.headers)


def _record(urls=(URL,), kb="KB5035853"):
    return UpdateRecord(title=f"Cumulative Update ({kb})", update_id="abc", kb_number=kb, download_urls=list(urls))


def test_suggested_filename():
    assert suggested_filename(URL) == "windows11.0-kb5035853-x64.msu"
    assert suggested_filename("https://host/a%20b.cab") == "a b.cab"
    assert suggested_filename("https://host/", fallback="KB1.cab") == "KB1.cab"
    assert suggested_filename(URL, 'attachment; filename="pkg.cab"') == "pkg.cab"
    assert suggested_filename(URL, "attachment; filename=../../evil.cab") == "evil.cab"


def test_saves_first_url(tmp_path):
    fetcher = StreamingFetcher()
    second = URL.replace(".msu", "-express.cab")

    packages = save_packages(fetcher, [_record(urls=(URL, second))], tmp_path / "out")

    assert fetcher.urls == [URL]
    package = packages[0]
    assert package.is_downloaded
    assert package.error is None
    assert package.file_size == len(PAYLOAD)
    assert (tmp_path / "out" / "windows11.0-kb5035853-x64.msu").read_bytes() == PAYLOAD
    assert package.sha256 == ""


def test_content_disposition_name(tmp_path):
    fetcher = StreamingFetcher(headers={"Content-Disposition": 'attachment; filename="renamed.msu"'})
    packages = save_packages(fetcher, [_record()], tmp_path)
    assert packages[0].local_path == str(tmp_path / "renamed.msu")


def test_records_without_urls_are_skipped(tmp_path):
    fetcher = StreamingFetcher()
    packages = save_packages(fetcher, [_record(urls=())], tmp_path)
    assert packages == []
    assert fetcher.urls == []


def test_existing_file_kept_unless_forced(tmp_path):
    existing = tmp_path / "windows11.0-kb5035853-x64.msu"
    existing.write_bytes(b"old")
    fetcher = StreamingFetcher()

    packages = save_packages(fetcher, [_record()], tmp_path)
    assert fetcher.urls == []
    assert packages[0].is_downloaded
    assert existing.read_bytes() == b"old"

    save_packages(fetcher, [_record()], tmp_path, force=True)
    assert fetcher.urls == [URL]
    assert existing.read_bytes() == PAYLOAD


def test_verify_records_sha256(tmp_path):
    packages = save_packages(StreamingFetcher(), [_record()], tmp_path, verify=True)
    assert packages[0].is_verified
    assert packages[0].sha256 == hashlib.sha256(PAYLOAD).hexdigest()


def test_failed_download_does_not_stop_the_rest(tmp_path):
    fetcher = StreamingFetcher(error=requests.ConnectionError("reset by peer"))

    packages = save_packages(fetcher, [_record(kb="KB1"), _record(kb="KB2")], tmp_path)

    assert len(packages) == 2
    assert not any(p.is_downloaded for p in packages)
    assert packages[0].error == "Download failed: reset by peer"
