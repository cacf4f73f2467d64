from typing import Any, Dict, List, Optional

from loguru import logger

from api_switchboard.core.control import JobControl
from api_switchboard.core.errors import JobStateError, SinkError
from api_switchboard.core.flatten import flatten_response
from api_switchboard.core.governor import RateGovernor, RateLimitConfig
from api_switchboard.core.job import BaseJob
from api_switchboard.core.models import EnrichmentJobSnapshot, EnrichmentOptions
from api_switchboard.core.request import HttpResult, RequestDescriptor
from api_switchboard.core.sink import BaseSink, KeySource, SinkResult
from api_switchboard.core.transport import Transport


class EnrichmentJob(BaseJob):
    """Fetches one API call per key and merges the flattened rows into a sink.

    The key list is read once and cached, so ``resume()`` continues from an
    index without asking the key source again.
    """

    kind = "enrichment"

    def __init__(
        self,
        transport: Transport,
        options: Optional[EnrichmentOptions] = None,
        rate_limit: Optional[RateLimitConfig] = None,
        control: Optional[JobControl] = None,
        job_id: Optional[str] = None
    ):
        super().__init__(control=control, job_id=job_id)
        self.transport = transport
        self.options = options or EnrichmentOptions()
        # Per-key pacing comes from the inter-key delay, not the governor
        rate = (rate_limit or RateLimitConfig()).model_copy(update={
            'min_delay_ms': 0,
            'retry_on_429': True,
            'retry_budget': self.options.max_attempts - 1
        })
        self.governor = RateGovernor(rate, self.control, on_retry=self._log_retry)
        self.key_list: Optional[List[str]] = None
        self.last_processed_index = -1
        self.processed_count = 0
        self.current_batch: List[Dict[str, Any]] = []
        self.rows_merged = 0
        self._key_source: Optional[KeySource] = None
        self._template: Optional[RequestDescriptor] = None
        self._sink: Optional[BaseSink] = None
        self._current_key: Optional[str] = None

    @property
    def sink(self) -> Optional[BaseSink]:
        return self._sink

    @property
    def total_count(self) -> int:
        return len(self.key_list) if self.key_list is not None else 0

    async def start(
        self,
        key_source: KeySource,
        template: RequestDescriptor,
        sink: BaseSink
    ) -> EnrichmentJobSnapshot:
        """Fresh run: acquire keys, then enrich from the first key."""
        if self.is_running:
            raise JobStateError(f"Enrichment job {self.job_id} is already running")
        self._key_source = key_source
        self._template = template
        self._sink = sink
        self.key_list = None
        self.current_batch = []
        return await self._run(0)

    def resume_index(self, from_index: Optional[int] = None) -> int:
        """Validate a resume request and return the index it starts at."""
        if self.is_running:
            raise JobStateError(f"Enrichment job {self.job_id} is already running")
        if self._template is None or self._key_source is None:
            raise JobStateError(f"Enrichment job {self.job_id} was never started")

        index = self.last_processed_index + 1 if from_index is None else from_index
        if index < 0 or (self.key_list is not None and index > len(self.key_list)):
            raise JobStateError(f"Resume index {index} is outside the key list")
        return index

    async def resume(self, from_index: Optional[int] = None) -> EnrichmentJobSnapshot:
        """Continue from ``from_index``, or from the key after the checkpoint."""
        index = self.resume_index(from_index)
        logger.info(f"Resuming enrichment {self.job_id} from key index {index}")
        return await self._run(index)

    async def _run(self, from_index: int) -> EnrichmentJobSnapshot:
        # Progress is the position in the key list, not a running total
        self.last_processed_index = from_index - 1
        self.processed_count = from_index
        self._begin()
        try:
            if self.key_list is None:
                await self._acquire_keys()
            if self.key_list is not None:
                await self._process_keys(from_index)
        finally:
            await self._flush()
            self._finish(
                summary=(
                    f"DONE: {self.processed_count}/{self.total_count} keys processed, "
                    f"{self.rows_merged} rows merged."
                ),
                item_count=self.rows_merged
            )
        return self.snapshot()

    async def _acquire_keys(self) -> None:
        keys: List[str] = []
        start = 0
        page_size = self.options.key_page_size
        max_keys = self.options.max_keys

        while True:
            if not await self.control.checkpoint():
                return
            try:
                page = await self._key_source.fetch_keys(start, page_size)
            except SinkError as e:
                self._log_error(f"Could not read keys: {str(e)}")
                return

            keys.extend(page.ids)
            logger.info(f"Loaded {len(keys)} keys so far (total {page.total})")
            if max_keys and len(keys) >= max_keys:
                keys = keys[:max_keys]
                break
            if not page.has_more or not page.ids:
                break
            start = page.next_start if page.next_start is not None else start + len(page.ids)

        self.key_list = keys
        self._log_event(status_text=f"loaded {len(keys)} keys", item_count=len(keys))

    async def _process_keys(self, from_index: int) -> None:
        first = True
        for index in range(from_index, len(self.key_list)):
            if not await self.control.checkpoint():
                break
            if not first and self.options.inter_key_delay_ms > 0:
                if not await self.control.sleep(self.options.inter_key_delay_ms / 1000):
                    break
            first = False

            key = self.key_list[index]
            self._current_key = key
            request = self._template.substitute(self.options.placeholder, key)
            result = await self.governor.execute(lambda: self.transport.send(request))
            if result.cancelled:
                break

            self._classify(key, result)
            self.last_processed_index = index
            self.processed_count = index + 1

            if len(self.current_batch) >= self.options.batch_size:
                await self._flush()
            self._notify()

    def _log_retry(self, status_text: str) -> None:
        self._log_event(key=self._current_key, status_text=status_text)

    def _classify(self, key: str, result: HttpResult) -> None:
        if result.ok:
            row = flatten_response(result.body, self.options.key_column, key)
            self.current_batch.append(row)
            self._log_event(key=key, item_count=1, status_text="fetched")
        elif result.status == 404:
            logger.info(f"No data for key {key} (404)")
            self._log_event(key=key, status_text="no data (404) - skipped")
        else:
            message = result.describe_error()
            self._log_error(message, key=key)
            self._log_event(key=key, status_text=f"fetch error: {message}")

    async def _flush(self) -> None:
        if not self.current_batch or self._sink is None:
            return
        rows = self.current_batch
        self.current_batch = []

        try:
            result = await self._sink.merge(rows, self.options.key_column)
        except SinkError as e:
            result = SinkResult(success=False, error=str(e))

        if result.success:
            self.rows_merged += len(rows)
            detail = ""
            if result.matched is not None:
                detail = f" ({result.matched} matched, {result.not_found or 0} not found)"
            logger.info(f"Merged batch of {len(rows)} rows{detail}")
            self._log_event(item_count=len(rows), status_text=f"merged{detail}")
        else:
            self._log_error(f"merge failed: {result.message}")
            self._log_event(item_count=len(rows), status_text=f"merge error: {result.message}")

    def snapshot(self) -> EnrichmentJobSnapshot:
        return EnrichmentJobSnapshot(
            **self._snapshot_fields(),
            last_processed_index=self.last_processed_index,
            processed_count=self.processed_count,
            total_count=self.total_count,
            current_batch=len(self.current_batch),
            batch_size=self.options.batch_size,
            rows_merged=self.rows_merged
        )

    def get_metrics(self) -> Dict[str, Any]:
        metrics = self.governor.get_metrics()
        metrics.update({
            'keys_processed': self.processed_count,
            'rows_merged': self.rows_merged,
            'errors': len(self.error_log)
        })
        return metrics
