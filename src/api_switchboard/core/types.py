"""Core type definitions."""
from enum import Enum


class PaginationMode(str, Enum):
    """Pagination styles the engine can drive."""
    # NONE: single fetch, no next-page signal is ever produced
    # PAGE_NUMBER: e.g. ?page=2&per_page=100 (also ?offset=200&limit=100)
    # CURSOR: next page comes from the response (token or full URL)
    NONE = "none"
    PAGE_NUMBER = "page-number"
    CURSOR = "cursor"


class CursorKind(str, Enum):
    """How a matched response field advances the cursor."""
    URL = "url"              # Full next-page URL, replaces the request URL
    TOKEN = "token"          # Opaque token sent as a query parameter
    HAS_MORE = "has_more"    # Boolean flag, last item id becomes the token


class TransportMode(str, Enum):
    """How far a bulk transport walks."""
    EXHAUSTIVE = "exhaustive"     # Until end-of-data
    MAX_PAGES = "maxPages"        # Stop after N pages
    DATE_WINDOW = "dateWindow"    # Until end-of-data, items filtered by date field


class JobStatus(str, Enum):
    """Lifecycle of a job."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SinkType:
    """Constants for supported sink types."""
    SPREADSHEET = "spreadsheet"
    WEBHOOK = "webhook"


__all__ = [
    'PaginationMode',
    'CursorKind',
    'TransportMode',
    'JobStatus',
    'SinkType'
]
