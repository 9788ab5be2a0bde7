"""Constants and configuration for the Windows Update Catalog client."""

import re

BASE_URL = "https://www.catalog.update.microsoft.com"
SEARCH_PATH = "/Search.aspx"
DOWNLOAD_DIALOG_PATH = "/DownloadDialog.aspx"

# Element ids on Search.aspx
RESULTS_TABLE_ID = "ctl00_catalogBody_updateMatches"
NO_RESULTS_ID = "ctl00_catalogBody_noResultText"
NEXT_PAGE_ID = "ctl00_catalogBody_nextPage"
PAGE_SUMMARY_ID = "ctl00_catalogBody_searchDuration"
HEADER_ROW_ID = "headerRow"

VIEWSTATE_ID = "__VIEWSTATE"
VIEWSTATE_GENERATOR_ID = "__VIEWSTATEGENERATOR"
EVENT_VALIDATION_ID = "__EVENTVALIDATION"
EVENT_ARGUMENT_ID = "__EVENTARGUMENT"
EVENT_TARGET_FIELD = "__EVENTTARGET"

NEXT_PAGE_TARGET = "ctl00$catalogBody$nextPageLinkText"

# Column header controls that trigger a server-side sort
SORT_LAST_UPDATED = "LastUpdated"
SORT_EVENT_TARGETS = {
    "Title": "ctl00$catalogBody$updateMatches$ctl02$titleHeaderLink",
    "Products": "ctl00$catalogBody$updateMatches$ctl02$productsHeaderLink",
    "Classification": "ctl00$catalogBody$updateMatches$ctl02$classificationComputedHeaderLink",
    SORT_LAST_UPDATED: "ctl00$catalogBody$updateMatches$ctl02$dateComputedHeaderLink",
    "Version": "ctl00$catalogBody$updateMatches$ctl02$driverVerVersionHeaderLink",
    "Size": "ctl00$catalogBody$updateMatches$ctl02$sizeInBytesHeaderLink",
}

# Row layout: checkbox, title, products, classification, date, version, size[, button]
MIN_ROW_CELLS = 7
UPDATE_ID_PATTERN = re.compile(r"^([a-f0-9-]+)_R\d+$", re.IGNORECASE)
KB_PATTERN = re.compile(r"\(KB(\d+)\)")
SIZE_PATTERN = re.compile(r"([\d.,]+)\s*([KMGT]?B)\b", re.IGNORECASE)
PAGE_SUMMARY_PATTERN = re.compile(r"page\s+(\d+)\s+of\s+(\d+)", re.IGNORECASE)

SIZE_UNITS = {
    "B": 1,
    "KB": 1024,
    "MB": 1024 ** 2,
    "GB": 1024 ** 3,
    "TB": 1024 ** 4,
}

# Checked in order, first match wins
ARCHITECTURE_KEYWORDS = [
    ("ARM64", ("arm64",)),
    ("x64", ("x64", "amd64")),
    ("x86", ("x86",)),
]
ARCHITECTURE_UNKNOWN = "Unknown"

# DownloadDialog.aspx extraction
SCRIPT_URL_PATTERN = re.compile(r"\.url\s*=\s*'([^']+)'")
CDN_URL_PATTERN = re.compile(
    r"(https?://(?:dl\.delivery\.mp\.microsoft\.com"
    r"|(?:catalog\.s\.)?download\.windowsupdate\.com)/[^'\"\s<>]*)",
    re.IGNORECASE,
)

# HTTP client configuration
REQUEST_TIMEOUT = 300  # seconds, whole request
RATE_LIMIT_DELAY = 0.25  # seconds between requests
DOWNLOAD_WORKERS = 4
MAX_PAGES = 40  # the catalog stops paging after 1000 rows
DEFAULT_PAGE_SIZE = 25
CHUNK_SIZE = 1024 * 256

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

BROWSER_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}
