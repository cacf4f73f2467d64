from typing import Any, AsyncIterator, List, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from api_switchboard.core.errors import JobStateError
from api_switchboard.core.governor import RateGovernor
from api_switchboard.core.pagination import (
    CursorEntry,
    PaginationState,
    extract_items,
    refine_from_response
)
from api_switchboard.core.request import HttpResult, RequestDescriptor
from api_switchboard.core.transport import Transport
from api_switchboard.core.types import PaginationMode


class Page(BaseModel):
    """One fetched page together with the pagination state after it."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    index: int                                  # 1-based position in this walk
    request: RequestDescriptor
    result: HttpResult
    items: List[Any] = Field(default_factory=list)
    state: PaginationState
    is_last: bool = False
    repeated: bool = False                      # Same items as the page before

    @property
    def ok(self) -> bool:
        return self.result.ok

    @property
    def cancelled(self) -> bool:
        return self.result.cancelled

    @property
    def network_error(self) -> bool:
        return self.result.network_error

    @property
    def error(self) -> Optional[str]:
        return None if self.result.ok else self.result.describe_error()


class PageWalker:
    """Lazy, forward-only walk over the pages of one API.

    Each ``next()`` builds a fresh descriptor from the current pagination
    state, runs it through the rate governor and refines the state from the
    response. Cursor mode keeps a stack of earlier positions for ``prev()``.
    """

    def __init__(
        self,
        request: RequestDescriptor,
        state: PaginationState,
        governor: RateGovernor,
        transport: Transport
    ):
        self.request = request
        self.state = state
        self.governor = governor
        self.transport = transport
        self.pages_fetched = 0
        self._current: Optional[CursorEntry] = None
        self._exhausted = False
        self._previous_items: Optional[List[Any]] = None

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def _size_params(self, state: PaginationState) -> dict:
        if state.size_param_name and state.items_per_page:
            return {state.size_param_name: state.items_per_page}
        return {}

    def build_request(
        self,
        state: PaginationState,
        entry: Optional[CursorEntry] = None
    ) -> RequestDescriptor:
        """Page-specific descriptor for a state and cursor position."""
        if state.mode == PaginationMode.PAGE_NUMBER:
            page_value = state.current_offset if state.offset_based else state.current_page_index
            return self.request.with_params({
                state.page_param_name: page_value,
                **self._size_params(state)
            })

        if state.mode == PaginationMode.CURSOR:
            if entry is not None and entry.url:
                return self.request.with_url(entry.url)
            if entry is not None and entry.token:
                return self.request.with_params({
                    state.cursor_param_name: entry.token,
                    **self._size_params(state)
                })
            return self.request.with_params(self._size_params(state))

        return self.request

    def _next_entry(self) -> Optional[CursorEntry]:
        if self.state.next_full_url:
            return CursorEntry(url=self.state.next_full_url)
        if self.state.next_cursor_token and self.state.cursor_param_name:
            return CursorEntry(token=self.state.next_cursor_token)
        return None

    async def next(self) -> Optional[Page]:
        """Fetch the next page, or return None at end-of-data."""
        if self._exhausted:
            return None

        entry = None
        if self.state.mode == PaginationMode.CURSOR and self.pages_fetched > 0:
            entry = self._next_entry()
            if entry is None:
                self._exhausted = True
                return None
            stack = self.state.prior_cursor_stack + [self._current or CursorEntry()]
            self.state = self.state.evolve(prior_cursor_stack=stack)

        return await self._fetch(entry)

    async def prev(self) -> Optional[Page]:
        """Re-fetch the page before the current one (cursor mode only)."""
        if self.state.mode != PaginationMode.CURSOR:
            raise JobStateError("prev() is only available in cursor mode")

        stack = list(self.state.prior_cursor_stack)
        entry = stack.pop() if stack else CursorEntry()
        self.state = self.state.evolve(prior_cursor_stack=stack)
        self._exhausted = False
        return await self._fetch(entry)

    async def _fetch(self, entry: Optional[CursorEntry]) -> Page:
        request = self.build_request(self.state, entry)
        result = await self.governor.execute(lambda: self.transport.send(request))
        self.pages_fetched += 1
        index = self.pages_fetched

        if result.cancelled:
            return Page(index=index, request=request, result=result, state=self.state)

        if not result.ok:
            logger.error(f"Page {index} failed: {result.describe_error()}")
            self._skip_failed_page()
            self._current = entry or CursorEntry()
            return Page(index=index, request=request, result=result, state=self.state,
                        is_last=self._exhausted)

        items = extract_items(result.body)
        logger.info(f"Received {len(items)} items in page {index}")
        if self._repeats_previous(items):
            # The server ignored the page parameter
            logger.warning(f"Page {index} repeats the previous page, ending walk")
            self._exhausted = True
            return Page(index=index, request=request, result=result, state=self.state,
                        is_last=True, repeated=True)
        self._previous_items = items
        self.state, is_last = self._advance(self.state, result.body, len(items))
        self._current = entry or CursorEntry()
        self._exhausted = is_last
        return Page(index=index, request=request, result=result, items=items,
                    state=self.state, is_last=is_last)

    def _repeats_previous(self, items: List[Any]) -> bool:
        return (
            self.state.mode == PaginationMode.PAGE_NUMBER
            and bool(items)
            and items == self._previous_items
        )

    def _skip_failed_page(self) -> None:
        # Page numbers can move past a failed page; a cursor cannot
        if self.state.mode == PaginationMode.PAGE_NUMBER:
            self.state = self.state.evolve(
                current_page_index=self.state.current_page_index + 1,
                current_offset=self.state.current_offset + (self.state.items_per_page or 0)
            )
        else:
            self._exhausted = True

    def _advance(self, state: PaginationState, body: Any, item_count: int):
        if state.mode == PaginationMode.PAGE_NUMBER:
            short_page = state.items_per_page is not None and item_count < state.items_per_page
            page_size = state.items_per_page
            if page_size is None and item_count > 0:
                # No size was sent, so the first page shows the server default
                page_size = item_count
            new_state = state.evolve(
                current_page_index=state.current_page_index + 1,
                current_offset=state.current_offset + item_count,
                items_per_page=page_size
            )
            return new_state, item_count == 0 or short_page

        if state.mode == PaginationMode.CURSOR:
            new_state = refine_from_response(state, body)
            if new_state.mode != PaginationMode.CURSOR:
                return new_state, True
            return new_state, item_count == 0 or self._entry_for(new_state) is None

        return state, True

    @staticmethod
    def _entry_for(state: PaginationState) -> Optional[CursorEntry]:
        if state.next_full_url:
            return CursorEntry(url=state.next_full_url)
        if state.next_cursor_token and state.cursor_param_name:
            return CursorEntry(token=state.next_cursor_token)
        return None

    async def __aiter__(self) -> AsyncIterator[Page]:
        while True:
            page = await self.next()
            if page is None:
                return
            yield page
