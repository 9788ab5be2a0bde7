"""Search orchestration for the Windows Update Catalog."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import replace
from typing import Optional
from urllib.parse import urlencode

from .constants import BASE_URL, DOWNLOAD_WORKERS, MAX_PAGES, SEARCH_PATH
from .fetcher import Fetcher, TraceSink
from .models import SearchCriteria, SearchResult, SearchState, SessionState, TraceEvent, UpdateRecord
from .parser import parse_search_page
from .resolver import resolve_download_urls, resolve_many
from .sorting import apply_sort, fetch_next_page

logger = logging.getLogger(__name__)

ARCHITECTURE_ALIASES = {
    "amd64": "x64",
    "x64": "x64",
    "x86": "x86",
    "arm64": "arm64",
}


def _normalize_architecture(value: str) -> str:
    value = value.strip().lower()
    return ARCHITECTURE_ALIASES.get(value, value)


def apply_filters(updates: list[UpdateRecord], criteria: SearchCriteria) -> list[UpdateRecord]:
    """Client-side filters the catalog does not apply itself."""
    filtered = updates

    if criteria.architecture:
        wanted = _normalize_architecture(criteria.architecture)
        filtered = [u for u in filtered if _normalize_architecture(u.architecture) == wanted]

    # Records without a parsed date are kept out of date-range results
    if criteria.date_from:
        filtered = [u for u in filtered if u.last_updated and u.last_updated >= criteria.date_from]
    if criteria.date_to:
        filtered = [u for u in filtered if u.last_updated and u.last_updated <= criteria.date_to]

    if not criteria.include_superseded:
        filtered = [u for u in filtered if not u.is_superseded]

    if len(filtered) != len(updates):
        logger.info("Applied filters: %d -> %d updates", len(updates), len(filtered))
    return filtered


class CatalogClient:
    """Runs searches against the catalog, one browsing session per call.

    Each call to search_updates walks the steps
    INITIAL -> SEARCHED -> [SORTED] -> [PAGINATED] -> [URLS_RESOLVED] -> FILTERED -> DONE
    and leaves early as NO_RESULTS or FAILED. Postback tokens never outlive
    the call.
    """

    def __init__(
        self,
        fetcher: Optional[Fetcher] = None,
        base_url: str = BASE_URL,
        max_workers: int = DOWNLOAD_WORKERS,
        max_pages: int = MAX_PAGES,
        trace: Optional[TraceSink] = None,
    ):
        self.fetcher = fetcher or Fetcher(trace=trace)
        self.base_url = base_url.rstrip("/")
        self.max_workers = max_workers
        self.max_pages = max_pages
        self.trace = trace

    def __enter__(self) -> CatalogClient:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self.fetcher.close()

    def build_search_url(self, criteria: SearchCriteria) -> str:
        params = {"q": criteria.query}
        if criteria.product:
            params["product"] = criteria.product
        if criteria.classification:
            params["classification"] = criteria.classification
        return f"{self.base_url}{SEARCH_PATH}?{urlencode(params)}"

    def _enter(self, state: SearchState, query: str) -> SearchState:
        logger.debug("Search '%s' -> %s", query, state.value)
        if self.trace is not None:
            try:
                self.trace(TraceEvent(kind="state", detail=state.value))
            except Exception as e:
                logger.warning("Trace sink failed on state %s: %s", state.value, e)
        return state

    def _finish(
        self,
        result: SearchResult,
        session: SessionState,
        state: SearchState,
        started: float,
        error: Optional[str] = None,
    ) -> SearchResult:
        result.state = self._enter(state, result.criteria.query)
        result.success = state is not SearchState.FAILED
        result.error_message = error
        result.warnings = list(session.warnings)
        result.duration = time.monotonic() - started

        if error:
            logger.error("Search for '%s' failed: %s", result.criteria.query, error)
        if result.warnings:
            logger.info("Search completed with %d warnings", len(result.warnings))
            for warning in result.warnings:
                logger.debug("Warning: %s", warning)
        return result

    def search_updates(self, criteria: SearchCriteria) -> SearchResult:
        """Search the catalog and return a SearchResult for every outcome."""
        started = time.monotonic()
        result = SearchResult(criteria=criteria, current_page=criteria.page or 1)
        session = SessionState()
        self._enter(SearchState.INITIAL, criteria.query)

        url = self.build_search_url(criteria)
        logger.info("Searching Windows Update Catalog: '%s'", criteria.query)
        logger.debug("Search URL: %s", url)

        response = self.fetcher.request(url)
        if not response.success:
            session = session.with_warning(f"Initial search failed: {response.error}")
            return self._finish(result, session, SearchState.FAILED, started, response.error)

        parsed = parse_search_page(response.html, session)
        session = parsed.session
        if parsed.error:
            return self._finish(result, session, SearchState.FAILED, started, parsed.error)
        if parsed.no_results:
            return self._finish(result, session, SearchState.NO_RESULTS, started)
        self._enter(SearchState.SEARCHED, criteria.query)
        updates = parsed.updates

        if criteria.wants_sort:
            sort = apply_sort(self.fetcher, url, session, criteria.sort_field, criteria.sort_descending)
            if sort.transport_failed:
                session = sort.session.with_warning(f"Sorting failed: {sort.error}")
                return self._finish(result, session, SearchState.FAILED, started, sort.error)
            if sort.success:
                updates, session = sort.updates, sort.session
                self._enter(SearchState.SORTED, criteria.query)
            else:
                logger.warning("Sorting failed, keeping server order: %s", sort.error)
                session = sort.session.with_warning(f"Sorting failed: {sort.error}")

        if criteria.all_pages:
            pages = 1
            while session.has_next_page and pages < self.max_pages:
                next_page, error = fetch_next_page(self.fetcher, url, session)
                if next_page is None:
                    session = session.with_warning(f"Fetching page {pages + 1} failed: {error}")
                    return self._finish(result, session, SearchState.FAILED, started, error)
                if next_page.no_results:
                    session = next_page.session.with_warning(f"Page {pages + 1} had no rows, stopping")
                    break
                pages += 1
                updates = updates + next_page.updates
                session = next_page.session
                logger.info("Fetched page %d (%d updates so far)", pages, len(updates))
            if session.has_next_page:
                session = session.with_warning(f"Stopped after {pages} pages")
            self._enter(SearchState.PAGINATED, criteria.query)

        if criteria.include_download_urls:
            updates, warnings = resolve_many(self.fetcher, self.base_url, updates, self.max_workers)
            session = session.with_warnings(warnings)
            self._enter(SearchState.URLS_RESOLVED, criteria.query)

        filtered = apply_filters(updates, criteria)
        if criteria.max_results and len(filtered) > criteria.max_results:
            session = session.with_warning(
                f"Found {len(filtered)} results, limited to {criteria.max_results}"
            )
            filtered = filtered[: criteria.max_results]
        self._enter(SearchState.FILTERED, criteria.query)

        result.total_count = len(filtered)
        result.total_pages = math.ceil(len(filtered) / criteria.page_size)
        if criteria.page is not None:
            start = (criteria.page - 1) * criteria.page_size
            filtered = filtered[start:start + criteria.page_size]
        result.updates = filtered

        logger.info(
            "Found %d updates for '%s' (total: %d)",
            len(result.updates),
            criteria.query,
            result.total_count,
        )
        return self._finish(result, session, SearchState.DONE, started)

    def search_many(self, queries: list[str], criteria: SearchCriteria) -> SearchResult:
        """Run one search per query and merge results, unique by update id.

        criteria supplies every option except the query. The merged result
        fails only when every query failed.
        """
        if not queries:
            raise ValueError("no search queries given")
        started = time.monotonic()
        merged = SearchResult(criteria=criteria)
        seen: set[str] = set()
        errors: list[str] = []

        for i, query in enumerate(queries, 1):
            logger.info("[%d/%d] Searching for '%s'", i, len(queries), query)
            single = self.search_updates(replace(criteria, query=query, max_results=None, page=None))
            merged.warnings.extend(single.warnings)
            if not single.success:
                errors.append(f"{query}: {single.error_message}")
                merged.warnings.append(f"Search failed for query '{query}': {single.error_message}")
                continue

            for update in single.updates:
                key = update.update_id or update.title
                if key in seen:
                    continue
                seen.add(key)
                merged.updates.append(update)

        if criteria.max_results and len(merged.updates) > criteria.max_results:
            merged.warnings.append(
                f"Found {len(merged.updates)} results, limited to {criteria.max_results}"
            )
            merged.updates = merged.updates[: criteria.max_results]

        merged.total_count = len(merged.updates)
        merged.total_pages = math.ceil(merged.total_count / criteria.page_size)
        merged.success = len(errors) < len(queries)
        merged.error_message = "; ".join(errors) or None
        merged.state = SearchState.DONE if merged.success else SearchState.FAILED
        merged.duration = time.monotonic() - started
        return merged

    def resolve_download_urls(self, update_id: str) -> tuple[list[str], Optional[str]]:
        return resolve_download_urls(self.fetcher, self.base_url, update_id)
