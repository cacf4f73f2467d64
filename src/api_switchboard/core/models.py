from datetime import datetime, UTC
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from api_switchboard.core.governor import RateGovernorState
from api_switchboard.core.pagination import PaginationState
from api_switchboard.core.request import RequestDescriptor
from api_switchboard.core.types import JobStatus, SinkType, TransportMode
from api_switchboard.core.windowing import DateWindow

DEFAULT_PAGE_CAP = 9999


def _now() -> datetime:
    return datetime.now(UTC)


class LogEntry(BaseModel):
    page: Optional[int] = Field(None)          # None for job-level entries
    key: Optional[str] = Field(None)           # Enrichment key, if any
    item_count: int = Field(0)
    status_text: str = Field(...)
    timestamp: datetime = Field(default_factory=_now)


class ErrorEntry(BaseModel):
    page: Optional[int] = Field(None)
    key: Optional[str] = Field(None)
    message: str = Field(...)
    timestamp: datetime = Field(default_factory=_now)


class FilterPolicy(BaseModel):
    """How far a bulk transport walks and which items it keeps."""
    mode: TransportMode = Field(TransportMode.EXHAUSTIVE)
    max_pages: Optional[int] = Field(None)
    page_cap: int = Field(DEFAULT_PAGE_CAP)    # Request limit for runs without maxPages
    window: Optional[DateWindow] = Field(None)
    newest_first: bool = Field(True)           # Enables early stop once items predate the window

    @field_validator('max_pages', 'page_cap')
    @classmethod
    def validate_page_limits(cls, v, info):
        if v is not None and v < 1:
            raise ValueError(f"{info.field_name} must be at least 1")
        return v

    @property
    def page_limit(self) -> int:
        """Most pages a run may request."""
        if self.mode == TransportMode.MAX_PAGES:
            return self.max_pages
        return self.page_cap

    @model_validator(mode='after')
    def check_mode_requirements(self) -> 'FilterPolicy':
        if self.mode == TransportMode.MAX_PAGES and self.max_pages is None:
            raise ValueError("max_pages is required in maxPages mode")
        if self.mode == TransportMode.DATE_WINDOW and self.window is None:
            raise ValueError("a date window is required in dateWindow mode")
        return self


class EnrichmentOptions(BaseModel):
    batch_size: int = Field(25)                # Rows per merge write
    key_page_size: int = Field(500)            # Keys per key-source read
    inter_key_delay_ms: int = Field(500)       # Pause between per-key fetches
    placeholder: str = Field("{id}")           # Token replaced by each key
    key_column: str = Field("id")              # Column the sink merges on
    max_attempts: int = Field(3)               # Per-key fetch attempts (429 and network)
    max_keys: Optional[int] = Field(None)      # Stop key acquisition early

    @field_validator('batch_size', 'key_page_size', 'max_attempts')
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator('placeholder', 'key_column')
    @classmethod
    def validate_not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("must not be blank")
        return v


class JobSnapshot(BaseModel):
    """Read-only view of a job handed to observers and the control API."""
    job_id: str = Field(...)
    kind: str = Field(...)                     # "bulk" or "enrichment"
    status: JobStatus = Field(...)
    started_at: Optional[datetime] = Field(None)
    finished_at: Optional[datetime] = Field(None)
    event_log: List[LogEntry] = Field(default_factory=list)
    error_log: List[ErrorEntry] = Field(default_factory=list)
    waiting: bool = Field(False)               # In a delay, backoff or pause wait
    wait_reason: Optional[str] = Field(None)


class BulkJobSnapshot(JobSnapshot):
    mode: TransportMode = Field(...)
    current_page_index: int = Field(0)
    pages_delivered: int = Field(0)
    items_delivered: int = Field(0)
    pagination: PaginationState = Field(...)
    rate: RateGovernorState = Field(...)


class EnrichmentJobSnapshot(JobSnapshot):
    last_processed_index: int = Field(-1)
    processed_count: int = Field(0)
    total_count: int = Field(0)
    current_batch: int = Field(0)              # Rows waiting for the next merge
    batch_size: int = Field(...)
    rows_merged: int = Field(0)


class ParseRequest(BaseModel):
    curl: str = Field(...)


class RequestSource(BaseModel):
    curl: Optional[str] = Field(None)
    request: Optional[RequestDescriptor] = Field(None)

    @model_validator(mode='after')
    def check_single_source(self):
        if (self.curl is None) == (self.request is None):
            raise ValueError("provide exactly one of 'curl' or 'request'")
        return self


class TransportRequest(RequestSource):
    sink: str = Field(SinkType.SPREADSHEET)
    sink_config: Dict[str, Any] = Field(default_factory=dict)    # Overrides for the configured sink
    mode: TransportMode = Field(TransportMode.EXHAUSTIVE)
    max_pages: Optional[int] = Field(None)
    date_field: Optional[str] = Field(None)
    date_from: Optional[str] = Field(None)
    date_to: Optional[str] = Field(None)
    newest_first: bool = Field(True)

    @field_validator('sink')
    @classmethod
    def validate_sink(cls, v):
        allowed = {SinkType.SPREADSHEET, SinkType.WEBHOOK}
        if v.lower() not in allowed:
            raise ValueError(f"Sink must be one of: {allowed}")
        return v.lower()

    def to_policy(self, default_max_pages: Optional[int] = None) -> FilterPolicy:
        window = None
        if self.mode == TransportMode.DATE_WINDOW and self.date_field:
            window = DateWindow(field=self.date_field, date_from=self.date_from,
                                date_to=self.date_to)
        max_pages = self.max_pages
        if self.mode == TransportMode.MAX_PAGES and max_pages is None:
            max_pages = default_max_pages
        return FilterPolicy(
            mode=self.mode,
            max_pages=max_pages,
            page_cap=default_max_pages or DEFAULT_PAGE_CAP,
            window=window,
            newest_first=self.newest_first
        )


class EnrichmentRequest(RequestSource):
    keys: Optional[List[str]] = Field(None)    # Explicit keys instead of reading the sheet
    sheet_name: Optional[str] = Field(None)
    key_column: Optional[str] = Field(None)
    placeholder: Optional[str] = Field(None)
    batch_size: Optional[int] = Field(None)
    inter_key_delay_ms: Optional[int] = Field(None)
    max_keys: Optional[int] = Field(None)
    sink_config: Dict[str, Any] = Field(default_factory=dict)

    def apply_to(self, options: EnrichmentOptions) -> EnrichmentOptions:
        """Configured options with the non-empty request fields applied."""
        overrides = {
            name: getattr(self, name)
            for name in ('key_column', 'placeholder', 'batch_size', 'inter_key_delay_ms', 'max_keys')
            if getattr(self, name) is not None
        }
        return EnrichmentOptions(**{**options.model_dump(), **overrides})


class ResumeRequest(BaseModel):
    from_index: Optional[int] = Field(None)    # Defaults to the checkpoint

    @field_validator('from_index')
    @classmethod
    def validate_from_index(cls, v):
        if v is not None and v < 0:
            raise ValueError("from_index must not be negative")
        return v
