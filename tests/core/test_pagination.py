import pytest
from pydantic import ValidationError

from api_switchboard.core.pagination import (
    CURSOR_PATTERNS,
    PaginationState,
    detect_cursor,
    extract_items,
    infer_from_request,
    refine_from_response
)
from api_switchboard.core.request import RequestDescriptor
from api_switchboard.core.types import PaginationMode


def request_for(query: str) -> RequestDescriptor:
    return RequestDescriptor(url=f"https://api.example.com/items?{query}")


class TestInferFromRequest:
    """Test suite for request-side pagination inference."""

    @pytest.mark.parametrize("query", [
        "page=1",
        "page=3&per_page=50",
        "page=1&sort=desc&q=test",
        "limit=20&page=2"
    ])
    def test_page_param_gives_page_number_mode(self, query):
        """Any request with 'page' and no cursor name is page-number paginated."""
        state = infer_from_request(request_for(query))

        assert state.mode == PaginationMode.PAGE_NUMBER
        assert state.page_param_name == "page"

    def test_page_size_and_start_page(self):
        state = infer_from_request(request_for("page=3&per_page=50"))

        assert state.size_param_name == "per_page"
        assert state.items_per_page == 50
        assert state.current_page_index == 3

    def test_cursor_name_wins_over_page_name(self):
        state = infer_from_request(request_for("page=1&cursor=abc&limit=20"))

        assert state.mode == PaginationMode.CURSOR
        assert state.cursor_param_name == "cursor"
        assert state.size_param_name == "limit"
        assert not state.tentative

    def test_size_only_is_tentative_cursor(self):
        state = infer_from_request(request_for("limit=50"))

        assert state.mode == PaginationMode.CURSOR
        assert state.tentative
        assert state.cursor_param_name is None
        assert state.items_per_page == 50

    def test_no_pagination_params(self):
        state = infer_from_request(request_for("q=python&sort=stars"))

        assert state.mode == PaginationMode.NONE
        assert not state.has_next_signal

    def test_offset_param_is_offset_based(self):
        state = infer_from_request(request_for("offset=20&limit=10"))

        assert state.mode == PaginationMode.PAGE_NUMBER
        assert state.page_param_name == "offset"
        assert state.offset_based
        assert state.current_offset == 20

    def test_pool_order_decides_not_query_order(self):
        state = infer_from_request(request_for("skip=0&page=2"))

        assert state.page_param_name == "page"
        assert state.current_page_index == 2

    def test_unparseable_size_falls_back_to_default(self):
        state = infer_from_request(request_for("page=1&per_page=all"))

        assert state.items_per_page == 10


class TestRefineFromResponse:
    """Test suite for response-shape cursor detection."""

    @pytest.fixture
    def cursor_state(self) -> PaginationState:
        return PaginationState(mode=PaginationMode.CURSOR, cursor_param_name="cursor")

    @pytest.mark.parametrize("url", [
        "https://graph.example.com/v1/me/feed?after=QVFI",
        "https://api.example.com/items?page=2",
        "/relative/next"
    ])
    def test_paging_next_sets_full_url(self, cursor_state, url):
        refined = refine_from_response(cursor_state, {"data": [], "paging": {"next": url}})

        assert refined.next_full_url == url
        assert refined.next_cursor_token is None

    def test_first_pattern_in_priority_order_wins(self, cursor_state):
        body = {
            "data": [{"id": 1}],
            "meta": {"next_cursor": "token-1"},
            "next": "https://api.example.com/items?page=2"
        }
        refined = refine_from_response(cursor_state, body)

        assert refined.matched_pattern == "next"
        assert refined.next_full_url == "https://api.example.com/items?page=2"
        assert refined.next_cursor_token is None

    def test_token_pattern(self, cursor_state):
        refined = refine_from_response(cursor_state, {"data": [], "meta": {"next_cursor": "abc"}})

        assert refined.next_cursor_token == "abc"
        assert refined.next_full_url is None
        assert refined.cursor_param_name == "cursor"

    def test_idempotent(self, cursor_state):
        body = {"items": [{"id": 1}], "nextPageToken": "xyz"}

        first = refine_from_response(cursor_state, body)
        second = refine_from_response(cursor_state, body)

        assert first == second
        assert refine_from_response(first, body) == first

    def test_next_page_token_adopts_param_hint(self):
        state = infer_from_request(request_for("maxResults=50"))
        refined = refine_from_response(state, {"items": [], "nextPageToken": "xyz"})

        assert refined.mode == PaginationMode.CURSOR
        assert refined.cursor_param_name == "pageToken"
        assert refined.next_cursor_token == "xyz"
        assert not refined.tentative

    def test_has_more_uses_last_item_id(self):
        state = infer_from_request(request_for("limit=2"))
        body = {"data": [{"id": "cus_1"}, {"id": "cus_2"}], "has_more": True}

        refined = refine_from_response(state, body)

        assert refined.next_cursor_token == "cus_2"
        assert refined.cursor_param_name == "starting_after"

    def test_has_more_false_ends_cursor_walk(self, cursor_state):
        refined = refine_from_response(cursor_state, {"data": [{"id": 1}], "has_more": False})

        assert refined.mode == PaginationMode.CURSOR
        assert not refined.has_next_signal

    def test_missing_signal_clears_previous_token(self, cursor_state):
        with_token = refine_from_response(cursor_state, {"next_cursor": "abc"})
        refined = refine_from_response(with_token, {"data": []})

        assert with_token.next_cursor_token == "abc"
        assert refined.next_cursor_token is None

    def test_tentative_without_match_falls_back_to_single_page(self):
        state = infer_from_request(request_for("per_page=100"))
        refined = refine_from_response(state, [{"id": 1}, {"id": 2}])

        assert refined.mode == PaginationMode.NONE
        assert not refined.tentative

    def test_boolean_and_empty_values_do_not_match(self, cursor_state):
        assert detect_cursor({"next": True}) is None
        assert detect_cursor({"next_cursor": ""}) is None
        assert not refine_from_response(cursor_state, {"next": None}).has_next_signal

    def test_page_number_state_is_unchanged(self):
        state = infer_from_request(request_for("page=1"))

        assert refine_from_response(state, {"next": "https://x"}) == state

    def test_hal_links(self, cursor_state):
        body = {"_embedded": {}, "_links": {"next": {"href": "https://api.example.com/x?p=2"}}}

        refined = refine_from_response(cursor_state, body)

        assert refined.next_full_url == "https://api.example.com/x?p=2"
        assert refined.matched_pattern == "_links.next.href"

    def test_pattern_list_is_ordered(self):
        names = [pattern.name for pattern in CURSOR_PATTERNS]

        assert names[0] == "paging.next"
        assert names.index("meta.next_cursor") < names.index("nextPageToken")
        assert names[-1] == "pagination.next_cursor"


class TestPaginationState:
    """Test suite for the pagination state model."""

    def test_next_signals_are_exclusive(self):
        with pytest.raises(ValidationError):
            PaginationState(mode=PaginationMode.CURSOR, next_cursor_token="a",
                            next_full_url="https://x")

    def test_evolve_returns_new_state(self):
        state = PaginationState(mode=PaginationMode.PAGE_NUMBER, page_param_name="page")
        evolved = state.evolve(current_page_index=2)

        assert evolved.current_page_index == 2
        assert state.current_page_index == 1


class TestExtractItems:
    """Test suite for locating the item array."""

    def test_body_is_array(self):
        assert extract_items([{"id": 1}]) == [{"id": 1}]

    def test_wrapped_array(self):
        assert extract_items({"results": [1, 2], "count": 2}) == [1, 2]

    def test_key_priority(self):
        assert extract_items({"items": [1], "data": [2, 3]}) == [2, 3]

    def test_no_array_means_no_items(self):
        assert extract_items({"message": "ok"}) == []
        assert extract_items("plain text") == []
        assert extract_items(None) == []
