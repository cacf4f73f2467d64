import pytest

from api_switchboard.core.errors import JobStateError
from api_switchboard.core.governor import RateGovernor
from api_switchboard.core.pagination import infer_from_request
from api_switchboard.core.request import RequestDescriptor
from api_switchboard.core.walker import PageWalker
from tests.mocks.fake_api import (
    CursorApi,
    FakeTransport,
    LinkApi,
    PagedApi,
    json_result,
    network_down
)


@pytest.fixture
def governor(no_delay, control):
    return RateGovernor(no_delay, control)


def walker_for(url: str, transport, governor) -> PageWalker:
    request = RequestDescriptor(url=url)
    return PageWalker(request, infer_from_request(request), governor, transport)


async def collect(walker: PageWalker):
    return [page async for page in walker]


class TestPageNumberWalk:
    """Test suite for page-number walks."""

    async def test_walks_until_short_page(self, governor, sample_items):
        transport = FakeTransport(PagedApi(sample_items))
        walker = walker_for("https://api.example.com/items?page=1&per_page=10",
                            transport, governor)

        pages = await collect(walker)

        assert [len(page.items) for page in pages] == [10, 10, 5]
        assert [r.query_params["page"] for r in transport.requests] == ["1", "2", "3"]
        assert all(r.query_params["per_page"] == "10" for r in transport.requests)
        assert pages[-1].is_last
        assert walker.exhausted

    async def test_exact_multiple_ends_on_empty_page(self, governor):
        items = [{"id": i} for i in range(20)]
        walker = walker_for("https://api.example.com/items?page=1&per_page=10",
                            FakeTransport(PagedApi(items)), governor)

        pages = await collect(walker)

        assert [len(page.items) for page in pages] == [10, 10, 0]

    async def test_starts_from_requested_page(self, governor, sample_items):
        transport = FakeTransport(PagedApi(sample_items))
        walker = walker_for("https://api.example.com/items?page=2&per_page=10",
                            transport, governor)

        pages = await collect(walker)

        assert [len(page.items) for page in pages] == [10, 5]

    async def test_offset_walk(self, governor):
        items = [{"id": i} for i in range(7)]

        def offset_api(request):
            offset = int(request.query_params["offset"])
            limit = int(request.query_params["limit"])
            return json_result({"results": items[offset:offset + limit]})

        transport = FakeTransport(offset_api)
        walker = walker_for("https://api.example.com/items?offset=0&limit=3",
                            transport, governor)

        pages = await collect(walker)

        assert [len(page.items) for page in pages] == [3, 3, 1]
        assert [r.query_params["offset"] for r in transport.requests] == ["0", "3", "6"]

    async def test_failed_page_is_skipped(self, governor, sample_items):
        api = PagedApi(sample_items)
        api.failing_pages[2] = 500
        walker = walker_for("https://api.example.com/items?page=1&per_page=10",
                            FakeTransport(api), governor)

        pages = await collect(walker)

        assert [page.ok for page in pages] == [True, False, True]
        assert pages[1].error == "HTTP 500 Internal Server Error"
        assert [len(page.items) for page in pages] == [10, 0, 5]

    async def test_page_size_taken_from_first_page(self, governor, sample_items):
        transport = FakeTransport(PagedApi(sample_items))
        walker = walker_for("https://api.example.com/items?page=1", transport, governor)

        pages = await collect(walker)

        assert [len(page.items) for page in pages] == [10, 10, 5]
        assert len(transport.requests) == 3
        assert walker.state.items_per_page == 10
        assert all("per_page" not in r.query_params for r in transport.requests)

    async def test_repeated_page_ends_walk(self, governor, sample_items):
        transport = FakeTransport(lambda r: json_result(sample_items))
        walker = walker_for("https://api.example.com/items?page=1", transport, governor)

        pages = await collect(walker)

        assert [len(page.items) for page in pages] == [25, 0]
        assert pages[-1].repeated
        assert pages[-1].is_last
        assert len(transport.requests) == 2

    async def test_prev_not_available(self, governor, sample_items):
        walker = walker_for("https://api.example.com/items?page=1",
                            FakeTransport(PagedApi(sample_items)), governor)

        with pytest.raises(JobStateError):
            await walker.prev()


class TestCursorWalk:
    """Test suite for cursor walks."""

    async def test_token_cursor(self, governor, sample_items):
        transport = FakeTransport(CursorApi(sample_items))
        walker = walker_for("https://api.example.com/items?cursor=0&limit=10",
                            transport, governor)

        pages = await collect(walker)

        assert [len(page.items) for page in pages] == [10, 10, 5]
        assert [r.query_params.get("cursor") for r in transport.requests] == ["0", "10", "20"]
        assert pages[-1].is_last

    async def test_full_url_cursor(self, governor, sample_items):
        transport = FakeTransport(LinkApi(sample_items))
        walker = walker_for("https://api.example.com/feed?limit=10", transport, governor)

        pages = await collect(walker)

        assert [len(page.items) for page in pages] == [10, 10, 5]
        assert transport.requests[1].query_params == {"after": "10", "limit": "10"}
        assert transport.requests[2].full_url == "https://api.example.com/feed?after=20&limit=10"

    async def test_tentative_cursor_without_signal_is_single_page(self, governor):
        transport = FakeTransport(lambda r: json_result([{"id": 1}, {"id": 2}]))
        walker = walker_for("https://api.example.com/items?limit=50", transport, governor)

        pages = await collect(walker)

        assert len(pages) == 1
        assert len(transport.requests) == 1

    async def test_prev_returns_earlier_page(self, governor, sample_items):
        transport = FakeTransport(CursorApi(sample_items))
        walker = walker_for("https://api.example.com/items?cursor=0&limit=10",
                            transport, governor)

        await walker.next()
        await walker.next()
        third = await walker.next()
        back = await walker.prev()

        assert third.items[0]["id"] == 21
        assert back.items[0]["id"] == 11
        assert len(walker.state.prior_cursor_stack) == 1

    async def test_cursor_http_error_ends_walk(self, governor):
        transport = FakeTransport(responses=[
            json_result({"data": [{"id": 1}], "meta": {"next_cursor": "abc"}}),
            json_result({"error": "bad cursor"}, status=400, status_text="Bad Request")
        ])
        walker = walker_for("https://api.example.com/items?cursor=&limit=1",
                            transport, governor)

        pages = await collect(walker)

        assert [page.ok for page in pages] == [True, False]
        assert walker.exhausted


class TestSinglePage:
    """Test suite for requests without pagination."""

    async def test_single_fetch(self, governor):
        transport = FakeTransport(lambda r: json_result({"data": [{"id": 1}], "next": "https://x"}))
        walker = walker_for("https://api.example.com/items?q=x", transport, governor)

        pages = await collect(walker)

        assert len(pages) == 1
        assert pages[0].is_last
        assert transport.requests[0].query_params == {"q": "x"}

    async def test_network_failure_page(self, governor):
        walker = walker_for("https://api.example.com/items", FakeTransport(network_down),
                            governor)

        page = await walker.next()

        assert page.network_error
        assert not page.ok
        assert await walker.next() is None
