from datetime import date

import pytest
from bs4 import BeautifulSoup

from wucatalog.models import SessionState
from wucatalog.parser import (
    detect_architecture,
    extract_kb_number,
    extract_row,
    extract_update_id,
    parse_catalog_date,
    parse_products,
    parse_search_page,
    parse_size,
    parse_size_text,
)


def _tr(row_html):
    return BeautifulSoup(f"<table>{row_html}</table>", "html.parser").find("tr")


def _td(cell_html):
    return BeautifulSoup(f"<table><tr><td>{cell_html}</td></tr></table>", "html.parser").find("td")


class TestFieldHelpers:
    def test_products_deduplicated_case_insensitively_in_order(self):
        assert parse_products("Windows 11, windows 11, Windows Server 2022") == [
            "Windows 11",
            "Windows Server 2022",
        ]

    def test_products_normalize_spacing_and_drop_short_tokens(self):
        text = "Windows\xa011,  Windows 10,\n Windows 10 LTSB, X, "
        assert parse_products(text) == ["Windows 11", "Windows 10", "Windows 10 LTSB"]

    def test_products_keep_long_descriptive_names(self):
        text = "Windows 10 and later drivers, Windows 10 S and Later Servicing Drivers"
        assert parse_products(text) == [
            "Windows 10 and later drivers",
            "Windows 10 S and Later Servicing Drivers",
        ]

    def test_products_empty(self):
        assert parse_products("   ") == []

    def test_date_is_month_first(self):
        assert parse_catalog_date("03/14/2024") == date(2024, 3, 14)
        assert parse_catalog_date("03/04/2024") == date(2024, 3, 4)

    def test_date_fallback_formats(self):
        assert parse_catalog_date("2024-03-14") == date(2024, 3, 14)
        assert parse_catalog_date("March 14, 2024") == date(2024, 3, 14)

    def test_date_unparseable(self):
        assert parse_catalog_date("14/03/2024") is None
        assert parse_catalog_date("") is None

    def test_size_text_units(self):
        assert parse_size_text("2.5 MB") == 2621440
        assert parse_size_text("512 KB") == 512 * 1024
        assert parse_size_text("1.5 GB") == int(1.5 * 1024 ** 3)
        assert parse_size_text("1,024 KB") == 1024 * 1024
        assert parse_size_text("n/a") is None

    def test_hidden_exact_size_wins(self):
        cell = _td('<span id="x_size">11.8 MB</span><span id="x_originalSize" style="display: none;">12345678</span>')
        assert parse_size(cell) == (12345678, "11.8 MB")

    def test_hidden_span_without_known_id(self):
        cell = _td('11.8 MB<span style="display:none">12345678</span>')
        assert parse_size(cell) == (12345678, "11.8 MB")

    def test_visible_size_only(self):
        cell = _td('<span id="x_size">2.5 MB</span>')
        assert parse_size(cell) == (2621440, "2.5 MB")

    def test_kb_number(self):
        assert extract_kb_number("2024-03 Cumulative Update for Windows 11 (KB5035853)") == "KB5035853"
        assert extract_kb_number("Intel - System - 10.1.1.44") is None

    @pytest.mark.parametrize(
        "title, products, expected",
        [
            ("Update for Windows 11 for ARM64-based Systems (KB1)", ["Windows 11"], "ARM64"),
            ("Update for x64 and ARM64 (KB1)", [], "ARM64"),
            ("Driver for AMD64", [], "x64"),
            ("Update for Windows 10 for x64-based Systems", [], "x64"),
            ("Update for Windows 10 for x86-based Systems", [], "x86"),
            ("Realtek audio driver", ["Windows 10 x86 drivers"], "x86"),
            ("Microsoft Defender update", ["Windows 11"], "Unknown"),
        ],
    )
    def test_architecture_priority(self, title, products, expected):
        assert detect_architecture(title, products) == expected

    def test_update_id_from_row_id(self, guids):
        guid = guids[0]
        assert extract_update_id(f"{guid}_R12") == guid
        assert extract_update_id(f"{guid.upper()}_R1") == guid.upper()
        assert extract_update_id("headerRow") is None
        assert extract_update_id(f"{guid}_X1") is None


class TestExtractRow:
    def test_all_fields(self, make_row, guids):
        record, reason = extract_row(_tr(make_row()))

        assert reason is None
        assert record.update_id == guids[0]
        assert record.title == (
            "2024-03 Cumulative Update for Windows 11 Version 23H2 for x64-based Systems (KB5035853)"
        )
        assert record.kb_number == "KB5035853"
        assert record.products == ["Windows 11"]
        assert record.classification == "Security Updates"
        assert record.last_updated == date(2024, 3, 12)
        assert record.version is None
        assert record.size_in_bytes == 12345678
        assert record.size_formatted == "11.8 MB"
        assert record.architecture == "x64"
        assert record.download_urls == []
        assert record.is_superseded is False

    def test_identical_html_gives_identical_records(self, make_row):
        html = make_row(products="Windows 11, windows 11, Windows Server 2022")
        first, _ = extract_row(_tr(html))
        second, _ = extract_row(_tr(html))
        assert first == second

    def test_version_kept_when_present(self, make_row):
        record, _ = extract_row(_tr(make_row(version="10.0.22621.1")))
        assert record.version == "10.0.22621.1"

    def test_title_without_anchor_and_entities(self, make_row):
        record, _ = extract_row(_tr(make_row(title="Update for Office & Windows", with_link=False)))
        assert record.title == "Update for Office & Windows"

    def test_unmatched_row_id_leaves_update_id_unset(self, make_row):
        record, reason = extract_row(_tr(make_row(row_id="customRow")))
        assert reason is None
        assert record.update_id is None

    def test_size_from_visible_text(self, make_row):
        record, _ = extract_row(_tr(make_row(size="2.5 MB", exact_size=None)))
        assert record.size_in_bytes == 2621440

    def test_too_few_cells(self):
        tr = _tr('<tr id="abc_R1"><td></td><td>Title</td><td>Windows 11</td></tr>')
        record, reason = extract_row(tr)
        assert record is None
        assert "at least 7 cells" in reason

    def test_empty_title(self, make_row):
        record, reason = extract_row(_tr(make_row(title="   ")))
        assert record is None
        assert reason == "row has no title"


class TestParseSearchPage:
    def test_tokens_rows_and_paging(self, make_page, make_row, guids):
        html = make_page(
            rows=[make_row(guids[0], 1), make_row(guids[1], 2, title="Servicing Stack Update (KB5035000)")],
            view_state="VS-abc",
            generator="GEN-1",
            validation="EV-xyz",
            next_page=True,
            summary="Updates: 1 - 25 of 60 (page 1 of 3)",
        )
        result = parse_search_page(html, SessionState())

        assert result.no_results is False
        assert result.error is None
        assert [u.update_id for u in result.updates] == [guids[0], guids[1]]
        session = result.session
        assert session.view_state == "VS-abc"
        assert session.view_state_generator == "GEN-1"
        assert session.event_validation == "EV-xyz"
        assert session.event_argument == ""
        assert session.has_next_page is True
        assert (session.current_page, session.total_pages) == (1, 3)
        assert session.warnings == ()

    def test_prior_session_is_not_mutated(self, make_page, make_row):
        prior = SessionState(view_state="old", warnings=("earlier",))
        result = parse_search_page(make_page(rows=[make_row()]), prior)
        assert prior.view_state == "old"
        assert result.session.view_state == "VS-1"
        assert result.session.warnings == ("earlier",)

    def test_no_results_sentinel(self, make_page):
        prior = SessionState(view_state="old")
        html = make_page(no_results_text="We did not find any results for \"zzz\".", with_table=False)
        result = parse_search_page(html, prior)
        assert result.no_results is True
        assert result.updates == []
        assert result.error is None
        assert result.session is prior

    def test_empty_sentinel_element_is_ignored(self, make_page, make_row):
        result = parse_search_page(make_page(rows=[make_row()], no_results_text="   "), SessionState())
        assert result.no_results is False
        assert len(result.updates) == 1

    def test_missing_table_is_an_error(self, make_page):
        result = parse_search_page(make_page(with_table=False), SessionState())
        assert result.no_results is True
        assert result.error == "Results table not found in response"
        assert "Results table not found in response" in result.session.warnings

    def test_bad_row_is_skipped_with_warning(self, make_page, make_row, guids):
        bad = f'<tr id="{guids[2]}_R3"><td></td><td>Broken</td></tr>'
        html = make_page(rows=[make_row(guids[0], 1), bad, make_row(guids[1], 2)])
        result = parse_search_page(html, SessionState())

        assert [u.update_id for u in result.updates] == [guids[0], guids[1]]
        assert len(result.session.warnings) == 1
        assert result.session.warnings[0].startswith(f"Failed to parse update row {guids[2]}_R3")

    def test_rows_without_id_are_skipped_silently(self, make_page, make_row):
        html = make_page(rows=[make_row(), "<tr><td>spacer</td></tr>"])
        result = parse_search_page(html, SessionState())
        assert len(result.updates) == 1
        assert result.session.warnings == ()

    def test_header_only_table(self, make_page):
        result = parse_search_page(make_page(rows=[]), SessionState())
        assert result.no_results is True
        assert result.error is None
        assert "No update rows found in results table" in result.session.warnings

    def test_no_next_page(self, make_page, make_row):
        result = parse_search_page(make_page(rows=[make_row()]), SessionState())
        assert result.session.has_next_page is False
        assert (result.session.current_page, result.session.total_pages) == (1, 1)
