from .types import (
    PaginationMode,
    CursorKind,
    TransportMode,
    JobStatus,
    SinkType
)
from .errors import (
    SwitchboardError,
    RequestParseError,
    TransportError,
    SinkError,
    InitializationError,
    WriteError,
    CleanupError,
    JobStateError,
    JobConflictError
)
from .request import (
    RequestDescriptor,
    HttpResult
)
from .curl import parse_curl
from .pagination import (
    PaginationState,
    CursorPattern,
    CURSOR_PATTERNS,
    infer_from_request,
    refine_from_response,
    extract_items
)
from .governor import (
    RateLimitConfig,
    RateGovernor,
    RateGovernorState
)
from .control import JobControl
from .transport import (
    Transport,
    AiohttpTransport
)
from .walker import (
    Page,
    PageWalker
)
from .windowing import DateWindow
from .models import (
    FilterPolicy,
    EnrichmentOptions,
    JobSnapshot
)
from .sink import (
    SinkConfig,
    SinkResult,
    BaseSink,
    KeyPage,
    KeySource,
    ListKeySource
)
from .bulk import BulkTransportJob
from .enrichment import EnrichmentJob

__all__ = [
    'PaginationMode',
    'CursorKind',
    'TransportMode',
    'JobStatus',
    'SinkType',
    'SwitchboardError',
    'RequestParseError',
    'TransportError',
    'SinkError',
    'InitializationError',
    'WriteError',
    'CleanupError',
    'JobStateError',
    'JobConflictError',
    'RequestDescriptor',
    'HttpResult',
    'parse_curl',
    'PaginationState',
    'CursorPattern',
    'CURSOR_PATTERNS',
    'infer_from_request',
    'refine_from_response',
    'extract_items',
    'RateLimitConfig',
    'RateGovernor',
    'RateGovernorState',
    'JobControl',
    'Transport',
    'AiohttpTransport',
    'Page',
    'PageWalker',
    'DateWindow',
    'FilterPolicy',
    'EnrichmentOptions',
    'JobSnapshot',
    'SinkConfig',
    'SinkResult',
    'BaseSink',
    'KeyPage',
    'KeySource',
    'ListKeySource',
    'BulkTransportJob',
    'EnrichmentJob'
]
