import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime, UTC
from typing import Any, Dict, List, Optional, Protocol, Tuple
import time

import aiohttp
from pydantic import BaseModel, Field
from loguru import logger

from api_switchboard.core.errors import (
    CleanupError,
    InitializationError,
    SinkError,
    WriteError
)


class SinkConfig(BaseModel):
    """Configuration for sinks."""
    type: str                        # Type of sink ("spreadsheet" or "webhook")
    enabled: bool = True             # Whether the sink is enabled
    config: Dict[str, Any] = Field(default_factory=dict)    # Sink-specific configuration


class SinkResult(BaseModel):
    """Outcome of one delivery, mirroring the receiver's response envelope."""
    success: bool
    result: Optional[str] = None
    error: Optional[str] = None
    status: Optional[int] = None     # HTTP status of the delivery call, if any
    matched: Optional[int] = None    # Merge only
    not_found: Optional[int] = None  # Merge only
    new_columns: Optional[int] = None

    @property
    def message(self) -> str:
        if self.success:
            return self.result or "ok"
        return self.error or "Send failed"


class KeyPage(BaseModel):
    # One page of identifiers read back from a sink
    ids: List[str] = Field(default_factory=list)
    total: int = 0
    returned: int = 0
    has_more: bool = False
    next_start: Optional[int] = None


class KeySource(Protocol):
    """Paged supplier of identifiers for enrichment."""

    async def fetch_keys(self, start: int, limit: int) -> KeyPage:
        ...


class ListKeySource:
    """Key source over an in-memory list."""

    def __init__(self, keys: List[str]):
        self.keys = [str(k) for k in keys]
        self.calls = 0

    async def fetch_keys(self, start: int, limit: int) -> KeyPage:
        self.calls += 1
        chunk = self.keys[start:start + limit]
        end = start + len(chunk)
        has_more = end < len(self.keys)
        return KeyPage(
            ids=chunk,
            total=len(self.keys),
            returned=len(chunk),
            has_more=has_more,
            next_start=end if has_more else None
        )


class BaseSink(ABC):
    """Base class for all sinks with metrics and resource management."""

    def __init__(self, config: SinkConfig):
        self.config = config
        self._is_initialized: bool = False
        self._metrics: Dict[str, Any] = {
            'records_written': 0,
            'records_merged': 0,
            'write_errors': 0,
            'last_write_time': None,
            'total_write_time': 0.0,
            'batch_count': 0,
            'failed_batches': 0
        }
        self._start_time = time.monotonic()

    async def __aenter__(self) -> 'BaseSink':
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the sink for writing.

        Raises:
            InitializationError: If the sink is not usable
        """
        pass

    @abstractmethod
    async def write(self, data: List[Dict[str, Any]]) -> SinkResult:
        """Append records to the destination.

        Rejections by the destination come back as an unsuccessful result.

        Raises:
            WriteError: If the destination could not be reached
        """
        pass

    async def merge(self, rows: List[Dict[str, Any]], key_column: str) -> SinkResult:
        """Update existing records by key; only sinks with row storage support this."""
        raise SinkError(f"{type(self).__name__} does not support merge writes")

    @abstractmethod
    async def close(self) -> None:
        """Clean up resources."""
        pass

    def _record(self, count: int, result: SinkResult, started: float, merged: bool = False) -> None:
        self._metrics['batch_count'] += 1
        self._metrics['last_write_time'] = datetime.now(UTC)
        self._metrics['total_write_time'] += time.monotonic() - started
        if result.success:
            self._metrics['records_merged' if merged else 'records_written'] += count
        else:
            self._metrics['failed_batches'] += 1
            self._metrics['write_errors'] += 1
            logger.error(f"Sink rejected batch of {count} records: {result.message}")

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics for monitoring."""
        current_time = time.monotonic()
        metrics = self._metrics.copy()

        uptime = current_time - self._start_time
        metrics['uptime'] = uptime

        metrics['average_write_time'] = (
            metrics['total_write_time'] / metrics['batch_count']
            if metrics['batch_count'] > 0 else 0
        )

        metrics['success_rate'] = (
            (metrics['batch_count'] - metrics['failed_batches']) / metrics['batch_count']
            if metrics['batch_count'] > 0 else 0
        )

        return metrics


class HttpSink(BaseSink):
    """Sink that delivers JSON over HTTP through one aiohttp session."""

    url_key = "url"
    default_timeout = 30

    def __init__(self, config: SinkConfig, session: Optional[aiohttp.ClientSession] = None):
        super().__init__(config)
        self.url = self.config.config.get(self.url_key)
        self.timeout = self.config.config.get("timeout_seconds", self.default_timeout)
        self.session = session
        self._owns_session = session is None

    async def initialize(self) -> None:
        if not self.url:
            raise InitializationError(
                f"{type(self).__name__} requires '{self.url_key}' in its configuration"
            )
        await self._ensure_session()
        self._is_initialized = True

    async def _ensure_session(self) -> None:
        if not self.session:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True

    async def close(self) -> None:
        if self.session and self._owns_session:
            try:
                await self.session.close()
            except aiohttp.ClientError as e:
                raise CleanupError(f"Failed to close sink session: {str(e)}") from e
            finally:
                self.session = None
        self._is_initialized = False

    async def _request_json(self, method: str, **kwargs) -> Tuple[int, Any]:
        """Send one request; returns the status and the decoded body.

        Raises:
            WriteError: If the sink could not be reached
        """
        if not self._is_initialized:
            await self.initialize()
        try:
            async with self.session.request(method, self.url, **kwargs) as response:
                text = await response.text()
                try:
                    body = json.loads(text) if text else {}
                except ValueError:
                    body = {'result': text}
                return response.status, body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._metrics['write_errors'] += 1
            raise WriteError(f"Could not reach sink: {str(e) or e.__class__.__name__}") from e
