import asyncio
from datetime import datetime, UTC
from typing import Any, Awaitable, Callable, Dict, List, Optional

from loguru import logger

from api_switchboard.core.bulk import BulkTransportJob
from api_switchboard.core.config import AppConfig
from api_switchboard.core.control import JobControl
from api_switchboard.core.curl import parse_curl
from api_switchboard.core.enrichment import EnrichmentJob
from api_switchboard.core.errors import JobConflictError, JobStateError
from api_switchboard.core.factory import SinkFactory
from api_switchboard.core.job import BaseJob
from api_switchboard.core.models import EnrichmentRequest, RequestSource, TransportRequest
from api_switchboard.core.pagination import infer_from_request
from api_switchboard.core.request import RequestDescriptor
from api_switchboard.core.sink import BaseSink, ListKeySource
from api_switchboard.core.transport import AiohttpTransport, Transport
from api_switchboard.core.types import SinkType
from api_switchboard.sinks import SpreadsheetKeySource

TransportFactory = Callable[[], Transport]


def build_descriptor(source: RequestSource) -> RequestDescriptor:
    """Descriptor from a curl string or an already structured request."""
    if source.curl is not None:
        return parse_curl(source.curl)
    return source.request


class JobManager:
    """Runs at most one job at a time as a background task."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        transport_factory: Optional[TransportFactory] = None
    ):
        self.config = config or AppConfig()
        self.jobs: Dict[str, BaseJob] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._transport_factory = transport_factory or (
            lambda: AiohttpTransport(timeout=self.config.http.timeout_seconds)
        )

    def _control(self) -> JobControl:
        return JobControl(poll_interval=self.config.transport.pause_poll_interval_ms / 1000)

    @property
    def active_job(self) -> Optional[BaseJob]:
        for job_id, task in self._tasks.items():
            if not task.done():
                return self.jobs[job_id]
        return None

    def _ensure_idle(self) -> None:
        active = self.active_job
        if active:
            raise JobConflictError(f"Job {active.job_id} is still in flight")

    def get_job(self, job_id: str) -> BaseJob:
        if job_id not in self.jobs:
            raise KeyError(f"Job {job_id} not found")
        return self.jobs[job_id]

    async def _create_sink(self, sink_type: str, overrides: Dict[str, Any]) -> BaseSink:
        sink = SinkFactory.create_sink(sink_type, self.config.sink_settings(sink_type), overrides)
        await sink.initialize()
        return sink

    def _launch(self, job: BaseJob, run: Awaitable, sink: BaseSink, transport: Transport) -> None:
        self.jobs[job.job_id] = job
        self._tasks[job.job_id] = asyncio.create_task(self._execute(job, run, sink, transport))

    async def _execute(self, job: BaseJob, run: Awaitable, sink: BaseSink,
                       transport: Transport) -> None:
        try:
            await run
        except Exception as e:
            logger.error(f"Job {job.job_id} failed: {str(e)}")
        finally:
            await sink.close()
            cleanup = getattr(transport, 'cleanup', None)
            if cleanup:
                await cleanup()

    def infer(self, curl: str) -> Dict[str, Any]:
        """Parse a curl string and classify its pagination."""
        descriptor = parse_curl(curl)
        state = infer_from_request(descriptor)
        return {
            'request': descriptor.model_dump(mode='json'),
            'full_url': descriptor.full_url,
            'pagination': state.model_dump(mode='json')
        }

    async def trigger_transport(self, request: TransportRequest) -> Dict[str, str]:
        self._ensure_idle()
        descriptor = build_descriptor(request)
        pagination = infer_from_request(descriptor)
        policy = request.to_policy(self.config.transport.default_max_pages)
        sink = await self._create_sink(request.sink, request.sink_config)

        transport = self._transport_factory()
        job = BulkTransportJob(transport, rate_limit=self.config.rate_limit, control=self._control())
        self._launch(job, job.start(descriptor, pagination, sink, policy), sink, transport)
        logger.info(f"Triggered bulk transport {job.job_id} to {request.sink}")
        return {"job_id": job.job_id, "status": "triggered"}

    async def trigger_enrichment(self, request: EnrichmentRequest) -> Dict[str, str]:
        self._ensure_idle()
        template = build_descriptor(request)
        options = request.apply_to(self.config.enrichment)
        overrides = dict(request.sink_config)
        if request.sheet_name:
            overrides['sheet_name'] = request.sheet_name
        sink = await self._create_sink(SinkType.SPREADSHEET, overrides)

        if options.placeholder not in template.model_dump_json():
            logger.warning(f"Placeholder {options.placeholder} does not appear in the request")

        if request.keys is not None:
            key_source = ListKeySource(request.keys)
        else:
            key_source = SpreadsheetKeySource(sink, options.key_column, sheet=request.sheet_name)

        transport = self._transport_factory()
        job = EnrichmentJob(transport, options=options, rate_limit=self.config.rate_limit,
                            control=self._control())
        self._launch(job, job.start(key_source, template, sink), sink, transport)
        logger.info(f"Triggered enrichment {job.job_id}")
        return {"job_id": job.job_id, "status": "triggered"}

    async def resume_enrichment(self, job_id: str, from_index: Optional[int] = None) -> Dict[str, Any]:
        job = self.get_job(job_id)
        if not isinstance(job, EnrichmentJob):
            raise JobStateError(f"Job {job_id} is not an enrichment job")
        self._ensure_idle()
        index = job.resume_index(from_index)

        transport = self._transport_factory()
        job.transport = transport
        self._launch(job, job.resume(index), job.sink, transport)
        return {"job_id": job_id, "status": "resumed", "from_index": index}

    def pause(self, job_id: str) -> Dict[str, Any]:
        job = self.get_job(job_id)
        job.pause()
        return self.get_status(job_id)

    def resume(self, job_id: str) -> Dict[str, Any]:
        job = self.get_job(job_id)
        job.resume_run()
        return self.get_status(job_id)

    def cancel(self, job_id: str) -> Dict[str, Any]:
        job = self.get_job(job_id)
        job.cancel()
        return self.get_status(job_id)

    def get_status(self, job_id: str) -> Dict[str, Any]:
        return self.get_job(job_id).snapshot().model_dump(mode='json')

    def list_jobs(self) -> List[Dict[str, Any]]:
        return [
            {
                "job_id": job.job_id,
                "kind": job.kind,
                "status": job.status.value,
                "started_at": job.started_at.isoformat() if job.started_at else None,
                "finished_at": job.finished_at.isoformat() if job.finished_at else None
            }
            for job in self.jobs.values()
        ]

    async def wait(self, job_id: str) -> None:
        """Block until the job's current run finishes."""
        task = self._tasks.get(job_id)
        if task:
            await task

    async def check_health(self) -> Dict[str, Any]:
        active = self.active_job
        return {
            "status": "healthy",
            "active_job": active.job_id if active else None,
            "timestamp": datetime.now(UTC).isoformat()
        }
