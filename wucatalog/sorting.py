"""Server-side sorting and paging through WebForms postbacks."""

from __future__ import annotations

import logging
from dataclasses import replace

from .constants import (
    EVENT_ARGUMENT_ID,
    EVENT_TARGET_FIELD,
    EVENT_VALIDATION_ID,
    NEXT_PAGE_TARGET,
    SORT_EVENT_TARGETS,
    SORT_LAST_UPDATED,
    VIEWSTATE_GENERATOR_ID,
    VIEWSTATE_ID,
)
from .fetcher import Fetcher
from .models import ParseResult, SessionState, SortResult
from .parser import parse_search_page

logger = logging.getLogger(__name__)


def build_postback_form(session: SessionState, event_target: str) -> dict[str, str]:
    """Hidden fields echoed back to Search.aspx."""
    return {
        EVENT_ARGUMENT_ID: session.event_argument,
        EVENT_TARGET_FIELD: event_target,
        EVENT_VALIDATION_ID: session.event_validation,
        VIEWSTATE_ID: session.view_state,
        VIEWSTATE_GENERATOR_ID: session.view_state_generator,
    }


def needs_double_postback(sort_by: str, descending: bool) -> bool:
    """Whether the header link must be posted twice to reach the requested order.

    Observed behaviour: a single click toggles from the default order, so
    LastUpdated ascending and every other column descending take two.
    """
    if sort_by == SORT_LAST_UPDATED:
        return not descending
    return descending


def _postback(
    fetcher: Fetcher, url: str, form: dict[str, str], session: SessionState
) -> tuple[ParseResult | None, str | None]:
    response = fetcher.request(url, "POST", form=form)
    if not response.success:
        return None, response.error
    return parse_search_page(response.html, session), None


def apply_sort(
    fetcher: Fetcher,
    url: str,
    session: SessionState,
    sort_by: str,
    descending: bool,
) -> SortResult:
    """Ask the server to sort the current result set."""
    event_target = SORT_EVENT_TARGETS.get(sort_by)
    if event_target is None:
        return SortResult(success=False, session=session, error=f"Unknown sort field: {sort_by}")

    logger.info("Applying sort: %s (%s)", sort_by, "descending" if descending else "ascending")
    form = build_postback_form(session, event_target)

    parsed, error = _postback(fetcher, url, form, session)
    if parsed is None:
        return SortResult(success=False, session=session, error=error, postbacks=1, transport_failed=True)
    if parsed.no_results:
        # Tokens from an empty page must not drive later postbacks
        return SortResult(
            success=False,
            session=session,
            error=parsed.error or "No results after sorting",
            postbacks=1,
        )

    postbacks = 1
    if needs_double_postback(sort_by, descending):
        logger.debug("Repeating sort postback for %s", sort_by)
        # Same form data, including the tokens from before the first postback
        second, error = _postback(fetcher, url, form, parsed.session)
        postbacks = 2
        if second is None:
            parsed = ParseResult(
                session=parsed.session.with_warning(f"Second sort request failed: {error}"),
                updates=parsed.updates,
            )
        elif second.no_results:
            parsed = ParseResult(
                session=parsed.session.with_warning("Second sort request returned no rows, keeping first order"),
                updates=parsed.updates,
            )
        else:
            parsed = second

    return SortResult(success=True, session=parsed.session, updates=parsed.updates, postbacks=postbacks)


def fetch_next_page(fetcher: Fetcher, url: str, session: SessionState) -> tuple[ParseResult | None, str | None]:
    """Post the next-page link and parse the following page."""
    form = build_postback_form(session, NEXT_PAGE_TARGET)
    parsed, error = _postback(fetcher, url, form, session)
    if parsed is None:
        return None, error
    if parsed.session.current_page <= session.current_page:
        # No page summary on the response, count locally
        parsed = replace(parsed, session=replace(parsed.session, current_page=session.current_page + 1))
    return parsed, None
