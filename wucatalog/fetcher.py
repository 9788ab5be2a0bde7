"""HTTP transport with browser headers, rate limiting, and trace events."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

import requests

from .constants import BROWSER_HEADERS, CHUNK_SIZE, RATE_LIMIT_DELAY, REQUEST_TIMEOUT
from .models import RawResponse, TraceEvent

logger = logging.getLogger(__name__)

TraceSink = Callable[[TraceEvent], None]


class Fetcher:
    """Issues catalog requests and reports failures as values.

    The fetcher knows nothing about postbacks; it never retries and never
    raises for network or HTTP errors.
    """

    def __init__(
        self,
        timeout: float = REQUEST_TIMEOUT,
        min_interval: float = RATE_LIMIT_DELAY,
        trace: Optional[TraceSink] = None,
        session: Optional[requests.Session] = None,
    ):
        self.timeout = timeout
        self.min_interval = min_interval
        self.trace = trace
        self.session = session or requests.Session()
        self.session.headers.update(BROWSER_HEADERS)
        self._last_request_time: Optional[float] = None
        self._lock = threading.Lock()

    def _rate_limit(self) -> None:
        """Enforce delay between requests, across threads."""
        with self._lock:
            if self._last_request_time is not None:
                elapsed = time.monotonic() - self._last_request_time
                if elapsed < self.min_interval:
                    time.sleep(self.min_interval - elapsed)
            self._last_request_time = time.monotonic()

    def _emit(self, event: TraceEvent) -> None:
        if self.trace is None:
            return
        try:
            self.trace(event)
        except Exception as e:
            logger.warning("Trace sink failed on %s event: %s", event.kind, e)

    def _read_body(self, response: requests.Response, deadline: float) -> str:
        """Read a streamed body, enforcing the whole-request deadline."""
        chunks = []
        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
            if time.monotonic() > deadline:
                raise requests.Timeout("deadline exceeded while reading body")
            chunks.append(chunk)
        return b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")

    def request(
        self,
        url: str,
        method: str = "GET",
        form: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> RawResponse:
        """Fetch a page and return its HTML, or a failed RawResponse."""
        method = method.upper()
        self._rate_limit()
        logger.debug("%s %s", method, url)
        if form:
            logger.debug(
                "Form fields: %s",
                ", ".join(f"{k}={str(v)[:40]}" for k, v in form.items()),
            )
        self._emit(TraceEvent(kind="request", url=url, method=method))

        started = time.monotonic()
        # requests times out per socket operation; the deadline bounds the whole request
        deadline = started + self.timeout
        try:
            response = self.session.request(
                method,
                url,
                data=form if method != "GET" else None,
                params=params,
                timeout=self.timeout,
                stream=True,
            )
            try:
                status = response.status_code
                if not 200 <= status < 300:
                    error = f"HTTP {status} for {method} {url}"
                    return self._failed(url, method, error, started, status)
                html = self._read_body(response, deadline)
            finally:
                response.close()
        except requests.Timeout:
            error = f"Request timed out after {self.timeout:g}s: {method} {url}"
            return self._failed(url, method, error, started)
        except requests.RequestException as e:
            error = f"Request failed: {method} {url}: {e}"
            return self._failed(url, method, error, started)

        elapsed = time.monotonic() - started
        logger.debug("HTTP %d, %d characters in %.2fs", status, len(html), elapsed)
        self._emit(
            TraceEvent(
                kind="response",
                url=url,
                method=method,
                status_code=status,
                detail=f"{len(html)} characters",
                elapsed=elapsed,
            )
        )
        return RawResponse(success=True, html=html, status_code=status)

    def _failed(
        self,
        url: str,
        method: str,
        error: str,
        started: float,
        status: Optional[int] = None,
    ) -> RawResponse:
        logger.error(error)
        self._emit(
            TraceEvent(
                kind="error",
                url=url,
                method=method,
                status_code=status,
                detail=error,
                elapsed=time.monotonic() - started,
            )
        )
        return RawResponse(success=False, status_code=status, error=error)

    def stream(self, url: str) -> requests.Response:
        """Open a streaming GET; raises requests exceptions to the caller."""
        self._rate_limit()
        logger.debug("GET (stream) %s", url)
        self._emit(TraceEvent(kind="request", url=url, method="GET", detail="stream"))
        response = self.session.get(url, stream=True, timeout=self.timeout)
        response.raise_for_status()
        return response

    def close(self) -> None:
        self.session.close()
