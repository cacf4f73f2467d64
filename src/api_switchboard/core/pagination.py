from typing import Any, Dict, List, Optional, Tuple
from pydantic import BaseModel, Field, model_validator
from loguru import logger

from api_switchboard.core.request import RequestDescriptor
from api_switchboard.core.types import CursorKind, PaginationMode
from api_switchboard.core.utils import parse_int

# Ranked query-parameter name pools (first listed name wins within a pool)
PAGE_PARAM_NAMES = ['page', 'p', 'pageNumber', 'page_number', 'pageNo', 'pg']
OFFSET_PARAM_NAMES = ['offset', 'skip', 'start']
PAGE_NUMBER_PARAM_NAMES = PAGE_PARAM_NAMES + OFFSET_PARAM_NAMES
CURSOR_PARAM_NAMES = [
    'cursor', 'after', 'since_id', 'next_cursor', 'starting_after', 'next_token', 'continuation'
]
SIZE_PARAM_NAMES = [
    'per_page', 'perPage', 'page_size', 'pageSize', 'limit', 'count', 'size', 'rows',
    'maxResults', 'max_results'
]

# Keys that may wrap the item array in an object response, in priority order
ITEM_ARRAY_KEYS = [
    'candidates', 'data', 'results', 'items', 'records', 'entries', 'users', 'list', 'rows',
    'members', 'jobs'
]

DEFAULT_ITEMS_PER_PAGE = 10


class CursorEntry(BaseModel):
    # A previously used page position; both fields empty means the first page
    url: Optional[str] = None                   # Full URL the page was fetched from
    token: Optional[str] = None                 # Cursor token the page was fetched with

    @property
    def is_first_page(self) -> bool:
        return self.url is None and self.token is None


class PaginationState(BaseModel):
    # Pagination contract of one API, owned by the active job
    mode: PaginationMode = PaginationMode.NONE
    current_page_index: int = 1                 # 1-based, page-number mode only
    items_per_page: Optional[int] = None        # Requested page size, or the size seen on page 1
    page_param_name: Optional[str] = None       # e.g. "page" or "offset"
    size_param_name: Optional[str] = None       # e.g. "per_page" or "limit"
    offset_based: bool = False                  # Page param carries an item offset
    current_offset: int = 0                     # Offset to request next (offset_based only)
    cursor_param_name: Optional[str] = None     # e.g. "cursor", "since_id"
    next_cursor_token: Optional[str] = None
    next_full_url: Optional[str] = None         # Wins over next_cursor_token
    prior_cursor_stack: List[CursorEntry] = Field(default_factory=list)
    tentative: bool = False                     # Cursor mode guessed from a size param only
    matched_pattern: Optional[str] = None       # Name of the last response pattern that hit

    @model_validator(mode='after')
    def check_single_next_signal(self) -> 'PaginationState':
        if self.next_cursor_token is not None and self.next_full_url is not None:
            raise ValueError("next_cursor_token and next_full_url are mutually exclusive")
        return self

    @property
    def has_next_signal(self) -> bool:
        return self.next_cursor_token is not None or self.next_full_url is not None

    def evolve(self, **updates: Any) -> 'PaginationState':
        """Copy of this state with updates applied and re-validated."""
        data = self.model_dump()
        data.update(updates)
        return PaginationState.model_validate(data)


class CursorMatch(BaseModel):
    pattern: str
    kind: CursorKind
    value: str
    param_hint: str


class CursorPattern(BaseModel):
    # Named matcher for one known response shape carrying a next-page signal
    name: str
    path: Tuple[str, ...]
    kind: CursorKind
    param_hint: str = "cursor"                  # Query param to use when none was inferred

    def match(self, body: Any) -> Optional[CursorMatch]:
        value = body
        for key in self.path:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return None

        if self.kind == CursorKind.HAS_MORE:
            if value is not True:
                return None
            items = find_item_array(body) or []
            last_id = items[-1].get('id') if items and isinstance(items[-1], dict) else None
            if last_id in (None, ""):
                return None
            return CursorMatch(pattern=self.name, kind=self.kind, value=str(last_id),
                               param_hint=self.param_hint)

        if isinstance(value, bool) or not isinstance(value, (str, int)):
            return None
        value = str(value)
        if not value:
            return None
        return CursorMatch(pattern=self.name, kind=self.kind, value=value,
                           param_hint=self.param_hint)


# Fixed priority order: the first pattern that matches wins
CURSOR_PATTERNS: List[CursorPattern] = [
    CursorPattern(name="paging.next", path=("paging", "next"), kind=CursorKind.URL),
    CursorPattern(name="next", path=("next",), kind=CursorKind.URL),
    CursorPattern(name="next_page", path=("next_page",), kind=CursorKind.URL),
    CursorPattern(name="links.next", path=("links", "next"), kind=CursorKind.URL),
    CursorPattern(name="_links.next.href", path=("_links", "next", "href"), kind=CursorKind.URL),
    CursorPattern(name="meta.next_cursor", path=("meta", "next_cursor"), kind=CursorKind.TOKEN),
    CursorPattern(name="cursor.next", path=("cursor", "next"), kind=CursorKind.TOKEN),
    CursorPattern(name="next_cursor", path=("next_cursor",), kind=CursorKind.TOKEN),
    CursorPattern(name="has_more", path=("has_more",), kind=CursorKind.HAS_MORE,
                  param_hint="starting_after"),
    CursorPattern(name="nextPageToken", path=("nextPageToken",), kind=CursorKind.TOKEN,
                  param_hint="pageToken"),
    CursorPattern(name="pagination.next_url", path=("pagination", "next_url"),
                  kind=CursorKind.URL),
    CursorPattern(name="pagination.next_cursor", path=("pagination", "next_cursor"),
                  kind=CursorKind.TOKEN),
]


def find_item_array(body: Any) -> Optional[List[Any]]:
    """Locate the item array in a response body, None if there is none."""
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in ITEM_ARRAY_KEYS:
            if isinstance(body.get(key), list):
                return body[key]
    return None


def extract_items(body: Any) -> List[Any]:
    """Item array of a response body; no array means zero items."""
    return find_item_array(body) or []


def detect_cursor(
    body: Any,
    patterns: Optional[List[CursorPattern]] = None
) -> Optional[CursorMatch]:
    """Run the ordered pattern list against a response body."""
    if not isinstance(body, dict):
        return None
    for pattern in patterns or CURSOR_PATTERNS:
        match = pattern.match(body)
        if match:
            return match
    return None


def _first_present(names: List[str], params: Dict[str, str]) -> Optional[str]:
    for name in names:
        if name in params:
            return name
    return None


def infer_from_request(descriptor: RequestDescriptor) -> PaginationState:
    """Classify pagination from the query parameters of a sample request."""
    params = descriptor.query_params
    cursor_param = _first_present(CURSOR_PARAM_NAMES, params)
    page_param = _first_present(PAGE_NUMBER_PARAM_NAMES, params)
    size_param = _first_present(SIZE_PARAM_NAMES, params)

    items_per_page = None
    if size_param:
        items_per_page = parse_int(params[size_param]) or DEFAULT_ITEMS_PER_PAGE

    if cursor_param:
        state = PaginationState(
            mode=PaginationMode.CURSOR,
            cursor_param_name=cursor_param,
            size_param_name=size_param,
            items_per_page=items_per_page
        )
    elif page_param:
        offset_based = page_param in OFFSET_PARAM_NAMES
        start_value = parse_int(params[page_param])
        state = PaginationState(
            mode=PaginationMode.PAGE_NUMBER,
            page_param_name=page_param,
            size_param_name=size_param,
            items_per_page=items_per_page,
            offset_based=offset_based,
            current_page_index=1 if offset_based else max(start_value or 1, 1),
            current_offset=max(start_value or 0, 0) if offset_based else 0
        )
    elif size_param:
        # Size alone: assume cursor-style, confirmed by the first response
        state = PaginationState(
            mode=PaginationMode.CURSOR,
            size_param_name=size_param,
            items_per_page=items_per_page,
            tentative=True
        )
    else:
        state = PaginationState()

    logger.info(
        f"Inferred pagination mode={state.mode.value} page_param={state.page_param_name} "
        f"size_param={state.size_param_name} cursor_param={state.cursor_param_name}"
    )
    return state


def refine_from_response(state: PaginationState, body: Any) -> PaginationState:
    """Update the next-page signal from a response body.

    Pure: the same state and body always give the same result. Only cursor
    mode reads the body; the other modes are returned unchanged.
    """
    if state.mode != PaginationMode.CURSOR:
        return state.evolve()

    match = detect_cursor(body)
    if match is None:
        if state.tentative:
            logger.info("No cursor pattern in response, falling back to single-page mode")
            return state.evolve(
                mode=PaginationMode.NONE,
                tentative=False,
                next_cursor_token=None,
                next_full_url=None,
                matched_pattern=None
            )
        return state.evolve(next_cursor_token=None, next_full_url=None, matched_pattern=None)

    logger.debug(f"Cursor pattern '{match.pattern}' matched: {match.value}")
    if match.kind == CursorKind.URL:
        return state.evolve(
            next_full_url=match.value,
            next_cursor_token=None,
            tentative=False,
            matched_pattern=match.pattern
        )
    return state.evolve(
        next_cursor_token=match.value,
        next_full_url=None,
        cursor_param_name=state.cursor_param_name or match.param_hint,
        tentative=False,
        matched_pattern=match.pattern
    )
