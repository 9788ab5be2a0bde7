"""Shared fixtures: catalog-shaped HTML builders and a scripted transport."""

from __future__ import annotations

import threading
from html import escape

import pytest

from wucatalog.models import RawResponse

GUID_A = "0d5c7a2c-1b5e-4f0e-9c1a-2f3e4d5c6b7a"
GUID_B = "a1b2c3d4-e5f6-4a7b-8c9d-0e1f2a3b4c5d"
GUID_C = "ffeeddcc-bbaa-4998-8776-655443322110"


def build_row(
    update_id=GUID_A,
    index=1,
    title="2024-03 Cumulative Update for Windows 11 Version 23H2 for x64-based Systems (KB5035853)",
    products="Windows 11",
    classification="Security Updates",
    last_updated="03/12/2024",
    version="n/a",
    size="11.8 MB",
    exact_size="12345678",
    row_id=None,
    with_link=True,
):
    row_id = row_id if row_id is not None else f"{update_id}_R{index}"
    title_html = (
        f'<a id="{update_id}_link" href="javascript:void(0);" '
        f"onclick='goToDetails(\"{update_id}\");'>{escape(title)}</a>"
        if with_link
        else escape(title)
    )
    size_html = f'<span id="{update_id}_size">{size}</span>'
    if exact_size is not None:
        size_html += f'<span id="{update_id}_originalSize" style="display: none;">{exact_size}</span>'
    return (
        f'<tr id="{row_id}">'
        '<td class="resultspadding"><input type="checkbox" /></td>'
        f'<td class="resultspadding">{title_html}</td>'
        f'<td class="resultspadding">\n            {escape(products)}\n        </td>'
        f'<td class="resultspadding">{escape(classification)}</td>'
        f'<td class="resultspadding">\n            {last_updated}\n        </td>'
        f'<td class="resultspadding">{version}</td>'
        f'<td class="resultspadding">{size_html}</td>'
        '<td class="resultspadding"><input class="flatBlueButtonDownload" type="button" value="Download" /></td>'
        "</tr>"
    )


def build_page(
    rows=(),
    view_state="VS-1",
    generator="8A1F2B3C",
    validation="EV-1",
    next_page=False,
    summary=None,
    no_results_text="",
    with_table=True,
):
    header = (
        '<tr id="headerRow"><td></td>'
        '<td><a id="ctl00_catalogBody_updateMatches_ctl02_titleHeaderLink">Title</a></td>'
        "<td>Products</td><td>Classification</td><td>Last Updated</td>"
        "<td>Version</td><td>Size</td><td></td></tr>"
    )
    table = (
        f'<table id="ctl00_catalogBody_updateMatches">{header}{"".join(rows)}</table>'
        if with_table
        else ""
    )
    summary_html = (
        f'<span id="ctl00_catalogBody_searchDuration">{summary}</span>' if summary else ""
    )
    next_html = (
        '<a id="ctl00_catalogBody_nextPage" href="javascript:__doPostBack(\'ctl00$catalogBody$nextPageLinkText\',\'\')">Next</a>'
        if next_page
        else ""
    )
    return (
        "<html><head><title>Microsoft Update Catalog</title></head><body>"
        '<form method="post" action="./Search.aspx?q=KB5035853" id="aspnetForm">'
        '<input type="hidden" name="__EVENTTARGET" id="__EVENTTARGET" value="" />'
        '<input type="hidden" name="__EVENTARGUMENT" id="__EVENTARGUMENT" value="" />'
        f'<input type="hidden" name="__VIEWSTATE" id="__VIEWSTATE" value="{view_state}" />'
        f'<input type="hidden" name="__VIEWSTATEGENERATOR" id="__VIEWSTATEGENERATOR" value="{generator}" />'
        f'<input type="hidden" name="__EVENTVALIDATION" id="__EVENTVALIDATION" value="{validation}" />'
        f"{summary_html}"
        f'<span id="ctl00_catalogBody_noResultText">{no_results_text}</span>'
        f"{table}{next_html}"
        "</form></body></html>"
    )


class FakeFetcher:
    """Stands in for Fetcher: replays scripted responses and records calls.

    ``responses`` is consumed in order; ``handler`` (if given) is called
    with (url, method, form) instead and must return a RawResponse.
    """

    def __init__(self, responses=(), handler=None):
        self.responses = list(responses)
        self.handler = handler
        self.calls = []
        self.closed = False
        self._lock = threading.Lock()

    def request(self, url, method="GET", form=None, params=None):
        with self._lock:
            self.calls.append((method.upper(), url, dict(form) if form else None))
            if self.handler is not None:
                return self.handler(url, method.upper(), form)
            if not self.responses:
                raise AssertionError(f"unexpected request: {method} {url}")
            response = self.responses.pop(0)
        if isinstance(response, str):
            return RawResponse(success=True, html=response, status_code=200)
        return response

    def posts(self):
        return [c for c in self.calls if c[0] == "POST"]

    def close(self):
        self.closed = True


@pytest.fixture
def make_row():
    return build_row


@pytest.fixture
def make_page():
    return build_page


@pytest.fixture
def fake_fetcher():
    return FakeFetcher


@pytest.fixture
def guids():
    return GUID_A, GUID_B, GUID_C
