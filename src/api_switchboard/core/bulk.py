from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from api_switchboard.core.control import JobControl
from api_switchboard.core.errors import JobStateError, SinkError
from api_switchboard.core.governor import RateGovernor, RateLimitConfig
from api_switchboard.core.job import BaseJob
from api_switchboard.core.models import BulkJobSnapshot, FilterPolicy
from api_switchboard.core.pagination import PaginationState
from api_switchboard.core.request import RequestDescriptor
from api_switchboard.core.sink import BaseSink, SinkResult
from api_switchboard.core.transport import Transport
from api_switchboard.core.types import JobStatus, TransportMode
from api_switchboard.core.walker import Page, PageWalker

ItemTransform = Callable[[List[Any]], List[Any]]


class BulkTransportJob(BaseJob):
    """Walks every page of an API and hands the items to a sink.

    One instance per run: once finished, a job never starts again. HTTP
    errors on a page are logged and skipped; a failure without any response
    stops the run.
    """

    kind = "bulk"

    def __init__(
        self,
        transport: Transport,
        rate_limit: Optional[RateLimitConfig] = None,
        control: Optional[JobControl] = None,
        job_id: Optional[str] = None,
        transform: Optional[ItemTransform] = None
    ):
        super().__init__(control=control, job_id=job_id)
        self.transport = transport
        self.governor = RateGovernor(rate_limit, self.control, on_retry=self._log_retry)
        self.transform = transform
        self.mode = TransportMode.EXHAUSTIVE
        self.current_page_index = 0
        self.pages_delivered = 0
        self.items_delivered = 0
        self.pagination = PaginationState()
        self.walker: Optional[PageWalker] = None

    async def start(
        self,
        descriptor: RequestDescriptor,
        pagination: PaginationState,
        sink: BaseSink,
        policy: Optional[FilterPolicy] = None
    ) -> BulkJobSnapshot:
        """Run the transport to completion or cancellation."""
        if self.status != JobStatus.IDLE:
            raise JobStateError(
                f"Bulk transport job {self.job_id} already ran; create a new job for a fresh run"
            )
        policy = policy or FilterPolicy()
        self.mode = policy.mode
        self.pagination = pagination
        self.walker = PageWalker(descriptor, pagination, self.governor, self.transport)
        self._begin()
        logger.info(
            f"Bulk transport {self.job_id}: mode={policy.mode.value} "
            f"pagination={pagination.mode.value} url={descriptor.url}"
        )

        try:
            await self._run(sink, policy)
        finally:
            self._complete()
        return self.snapshot()

    def _log_retry(self, status_text: str) -> None:
        page = self.walker.pages_fetched + 1 if self.walker else None
        self._log_event(page=page, status_text=status_text)

    def _within_page_limit(self, policy: FilterPolicy) -> bool:
        if self.current_page_index < policy.page_limit or self.walker.exhausted:
            return True
        if policy.mode != TransportMode.MAX_PAGES:
            logger.warning(f"Page cap of {policy.page_limit} reached, stopping transport")
            self._log_event(status_text=f"page cap of {policy.page_limit} reached - stopping")
        return False

    async def _run(self, sink: BaseSink, policy: FilterPolicy) -> None:
        while self._within_page_limit(policy):
            if not await self.control.checkpoint():
                break

            page = await self.walker.next()
            if page is None or page.cancelled:
                break

            self.current_page_index = page.index
            self.pagination = page.state

            if not page.ok:
                self._log_error(page.error, page=page.index)
                self._log_event(page=page.index, status_text=f"fetch error: {page.error}")
                if page.network_error:
                    logger.error(f"Network failure on page {page.index}, stopping transport")
                    break
                continue

            if page.repeated:
                self._log_event(page=page.index,
                                status_text="page repeats the previous one - stopping")
                break
            if not page.items:
                self._log_event(page=page.index, status_text="empty page - stopping")
                break

            items = self._filter(page, policy)
            if items is None:
                break
            if not items:
                continue

            if self.transform:
                items = self.transform(items)
            await self._deliver(sink, page.index, items)

    def _filter(self, page: Page, policy: FilterPolicy) -> Optional[List[Any]]:
        """Items to deliver; None when the date window says to stop."""
        if policy.mode != TransportMode.DATE_WINDOW or not policy.window.is_bounded:
            return page.items

        kept = policy.window.filter(page.items)
        if kept:
            return kept

        if policy.newest_first and policy.window.any_before(page.items):
            self._log_event(page=page.index, status_text="all items outside date range - stopping")
            return None

        self._log_event(
            page=page.index,
            status_text=f"0/{len(page.items)} items matched date range - skipping"
        )
        return []

    async def _deliver(self, sink: BaseSink, page_index: int, items: List[Any]) -> None:
        if not items:
            return
        try:
            result = await sink.write(items)
        except SinkError as e:
            result = SinkResult(success=False, error=str(e))

        if result.success:
            self.pages_delivered += 1
            self.items_delivered += len(items)
            logger.info(f"Delivered {len(items)} items from page {page_index}")
            self._log_event(page=page_index, item_count=len(items), status_text="sent")
        else:
            self._log_error(result.message, page=page_index)
            self._log_event(page=page_index, item_count=len(items),
                            status_text=f"send error: {result.message}")

    def _complete(self) -> None:
        if self.control.is_cancelled:
            outcome = "Cancelled"
        elif self.error_log:
            outcome = f"Completed with {len(self.error_log)} error(s)"
        else:
            outcome = "Completed"
        self._finish(
            summary=(
                f"DONE: {outcome}. {self.pages_delivered} pages, "
                f"{self.items_delivered} items total."
            ),
            item_count=self.items_delivered
        )

    def snapshot(self) -> BulkJobSnapshot:
        state = self.walker.state if self.walker else self.pagination
        return BulkJobSnapshot(
            **self._snapshot_fields(),
            mode=self.mode,
            current_page_index=self.current_page_index,
            pages_delivered=self.pages_delivered,
            items_delivered=self.items_delivered,
            pagination=state,
            rate=self.governor.state.model_copy()
        )

    def get_metrics(self) -> Dict[str, Any]:
        metrics = self.governor.get_metrics()
        metrics.update({
            'pages_delivered': self.pages_delivered,
            'items_delivered': self.items_delivered,
            'errors': len(self.error_log)
        })
        return metrics
