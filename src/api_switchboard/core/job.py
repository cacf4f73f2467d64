import uuid
from abc import ABC, abstractmethod
from datetime import datetime, UTC
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from api_switchboard.core.control import JobControl
from api_switchboard.core.errors import JobStateError
from api_switchboard.core.governor import RateGovernor
from api_switchboard.core.models import ErrorEntry, JobSnapshot, LogEntry
from api_switchboard.core.types import JobStatus

Listener = Callable[[JobSnapshot], Any]


class BaseJob(ABC):
    """Lifecycle, logs and observers shared by bulk and enrichment jobs.

    State is only mutated by the job's own methods; observers get a fresh
    snapshot after every change.
    """

    kind = "job"

    def __init__(self, control: Optional[JobControl] = None, job_id: Optional[str] = None):
        self.job_id = job_id or str(uuid.uuid4())
        self.control = control or JobControl()
        self.governor: Optional[RateGovernor] = None
        self.status = JobStatus.IDLE
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self.event_log: List[LogEntry] = []
        self.error_log: List[ErrorEntry] = []
        self._listeners: List[Listener] = []

    @property
    def is_running(self) -> bool:
        return self.status in (JobStatus.RUNNING, JobStatus.PAUSED)

    @property
    def is_paused(self) -> bool:
        return self.status == JobStatus.PAUSED

    @property
    def is_cancelled(self) -> bool:
        return self.control.is_cancelled

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register an observer; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def pause(self) -> None:
        if self.status != JobStatus.RUNNING:
            raise JobStateError(f"Cannot pause job {self.job_id} in state {self.status.value}")
        self.control.pause()
        self.status = JobStatus.PAUSED
        logger.info(f"Job {self.job_id} paused")
        self._notify()

    def resume_run(self) -> None:
        """Continue a paused run."""
        if self.status != JobStatus.PAUSED:
            raise JobStateError(f"Cannot resume job {self.job_id} in state {self.status.value}")
        self.control.resume()
        self.status = JobStatus.RUNNING
        logger.info(f"Job {self.job_id} resumed")
        self._notify()

    def cancel(self) -> None:
        if not self.is_running:
            raise JobStateError(f"Cannot cancel job {self.job_id} in state {self.status.value}")
        self.control.cancel()
        logger.warning(f"Cancellation requested for job {self.job_id}")
        self._notify()

    def _begin(self) -> None:
        self.control.reset()
        self.status = JobStatus.RUNNING
        self.started_at = datetime.now(UTC)
        self.finished_at = None
        logger.info(f"Starting {self.kind} job {self.job_id}")
        self._notify()

    def _finish(self, summary: Optional[str] = None, item_count: int = 0) -> None:
        if self.control.is_cancelled:
            self._log_event(status_text="cancelled")
        if summary:
            self._log_event(status_text=summary, item_count=item_count)
        self.finished_at = datetime.now(UTC)
        if self.control.is_cancelled:
            self.status = JobStatus.CANCELLED
        else:
            self.status = JobStatus.COMPLETED
        logger.info(
            f"Job {self.job_id} {self.status.value} with {len(self.error_log)} error(s)"
        )
        self._notify()

    def _log_event(self, status_text: str, page: Optional[int] = None,
                   key: Optional[str] = None, item_count: int = 0) -> None:
        self.event_log.append(
            LogEntry(page=page, key=key, item_count=item_count, status_text=status_text)
        )
        self._notify()

    def _log_error(self, message: str, page: Optional[int] = None,
                   key: Optional[str] = None) -> None:
        self.error_log.append(ErrorEntry(page=page, key=key, message=message))
        if page is not None:
            logger.error(f"Job {self.job_id} page {page}: {message}")
        elif key is not None:
            logger.error(f"Job {self.job_id} key {key}: {message}")
        else:
            logger.error(f"Job {self.job_id}: {message}")

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning(f"Job listener failed: {str(e)}")

    def _snapshot_fields(self) -> Dict[str, Any]:
        rate_state = self.governor.state if self.governor else None
        waiting = self.control.is_paused or bool(rate_state and rate_state.is_waiting)
        if self.control.is_paused:
            wait_reason = "paused"
        else:
            wait_reason = rate_state.wait_reason if rate_state else None
        return {
            'job_id': self.job_id,
            'kind': self.kind,
            'status': self.status,
            'started_at': self.started_at,
            'finished_at': self.finished_at,
            'event_log': list(self.event_log),
            'error_log': list(self.error_log),
            'waiting': waiting,
            'wait_reason': wait_reason
        }

    @abstractmethod
    def snapshot(self) -> JobSnapshot:
        """Read-only copy of the current job state."""
        pass
