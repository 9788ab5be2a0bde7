"""Data models for the Windows Update Catalog client."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field, replace
from datetime import date
from typing import Optional

from .constants import DEFAULT_PAGE_SIZE, SORT_LAST_UPDATED


class SearchState(enum.Enum):
    """Steps of a single search call."""

    INITIAL = "initial"
    SEARCHED = "searched"
    SORTED = "sorted"
    PAGINATED = "paginated"
    URLS_RESOLVED = "urls_resolved"
    FILTERED = "filtered"
    DONE = "done"
    NO_RESULTS = "no_results"
    FAILED = "failed"


@dataclass(frozen=True)
class SearchCriteria:
    """Immutable input to a catalog search."""

    query: str
    product: Optional[str] = None
    classification: Optional[str] = None
    architecture: Optional[str] = None  # "x86", "x64"/"AMD64", "ARM64"
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    sort_by: Optional[str] = None  # None keeps the server order (LastUpdated desc)
    descending: Optional[bool] = None
    page_size: int = DEFAULT_PAGE_SIZE
    page: Optional[int] = None  # None returns every row
    include_superseded: bool = False
    all_pages: bool = False
    include_download_urls: bool = False
    max_results: Optional[int] = None

    def __post_init__(self):
        if not self.query or not self.query.strip():
            raise ValueError("query must not be empty")
        if self.page_size < 1:
            raise ValueError(f"page_size must be positive, got {self.page_size}")
        if self.page is not None and self.page < 1:
            raise ValueError(f"page must be positive, got {self.page}")
        if self.max_results is not None and self.max_results < 1:
            raise ValueError(f"max_results must be positive, got {self.max_results}")
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from is after date_to")

    @property
    def wants_sort(self) -> bool:
        return self.sort_by is not None or self.descending is not None

    @property
    def sort_field(self) -> str:
        return self.sort_by or SORT_LAST_UPDATED

    @property
    def sort_descending(self) -> bool:
        """Requested direction; every field defaults to descending."""
        if self.descending is not None:
            return self.descending
        return True


@dataclass(frozen=True)
class SessionState:
    """Postback tokens of one browsing session, replaced after every response."""

    view_state: str = ""
    view_state_generator: str = ""
    event_validation: str = ""
    event_argument: str = ""
    has_next_page: bool = False
    warnings: tuple[str, ...] = ()
    current_page: int = 1
    total_pages: int = 1

    def with_warning(self, message: str) -> SessionState:
        return replace(self, warnings=self.warnings + (message,))

    def with_warnings(self, messages) -> SessionState:
        return replace(self, warnings=self.warnings + tuple(messages))


@dataclass
class UpdateRecord:
    """A single row of the catalog results table."""

    title: str
    update_id: Optional[str] = None
    kb_number: Optional[str] = None
    products: list[str] = field(default_factory=list)
    classification: str = ""
    last_updated: Optional[date] = None
    version: Optional[str] = None
    size_in_bytes: int = 0
    size_formatted: str = ""
    architecture: str = "Unknown"
    download_urls: list[str] = field(default_factory=list)
    is_superseded: bool = False
    warnings: list[str] = field(default_factory=list)

    def size_human(self, decimals: int = 2) -> str:
        """Format size_in_bytes with a 1024-based unit."""
        size = self.size_in_bytes
        if size <= 0:
            return "Unknown"
        for unit, factor in (("TB", 1024 ** 4), ("GB", 1024 ** 3), ("MB", 1024 ** 2), ("KB", 1024)):
            if size >= factor:
                return f"{size / factor:.{decimals}f} {unit}"
        return f"{size} bytes"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["last_updated"] = self.last_updated.isoformat() if self.last_updated else None
        return data

    def __str__(self) -> str:
        return f"{self.kb_number or '-'} - {self.title} ({self.architecture})"


@dataclass
class SearchResult:
    """Outcome of one search call, returned for every terminal state."""

    criteria: SearchCriteria
    updates: list[UpdateRecord] = field(default_factory=list)
    total_count: int = 0
    total_pages: int = 0
    current_page: int = 1
    success: bool = False
    error_message: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    duration: float = 0.0
    state: SearchState = SearchState.INITIAL

    @property
    def has_more_pages(self) -> bool:
        return self.current_page < self.total_pages


@dataclass(frozen=True)
class RawResponse:
    success: bool
    html: str = ""
    status_code: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ParseResult:
    session: SessionState
    no_results: bool = False
    updates: list[UpdateRecord] = field(default_factory=list)
    # Set when the page has no usable results surface at all
    error: Optional[str] = None


@dataclass(frozen=True)
class SortResult:
    success: bool
    session: SessionState
    updates: list[UpdateRecord] = field(default_factory=list)
    error: Optional[str] = None
    postbacks: int = 0
    transport_failed: bool = False


@dataclass(frozen=True)
class TraceEvent:
    """One entry for an optional trace sink."""

    kind: str  # "request", "response", "error", "state"
    url: str = ""
    method: str = ""
    status_code: Optional[int] = None
    detail: str = ""
    elapsed: float = 0.0


@dataclass
class DownloadedPackage:
    """A package file saved from a resolved download URL."""

    update_id: Optional[str]
    kb_number: Optional[str]
    title: str
    download_url: Optional[str] = None
    local_path: Optional[str] = None
    is_downloaded: bool = False
    is_verified: bool = False
    sha256: str = ""
    file_size: int = 0
    error: Optional[str] = None
