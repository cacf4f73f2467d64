import time
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger

from api_switchboard.core.errors import SinkError
from api_switchboard.core.sink import HttpSink, KeyPage, SinkConfig, SinkResult
from api_switchboard.core.utils import parse_int

DEFAULT_SHEET_NAME = "API_Data"
DEFAULT_ID_BATCH = 500


def result_from_response(status: int, body: Any, fallback: str) -> SinkResult:
    """Build a result from the receiver's ``{success, result, error}`` envelope."""
    if not isinstance(body, dict):
        body = {'result': str(body)}
    http_ok = 200 <= status < 300
    success = body['success'] is True if 'success' in body else http_ok
    return SinkResult(
        success=success,
        result=body.get('result') or (fallback if success else None),
        error=None if success else (body.get('error') or f"HTTP {status}"),
        status=status,
        matched=parse_int(body.get('matched')),
        not_found=parse_int(body.get('notFound')),
        new_columns=parse_int(body.get('newColumns'))
    )


class SpreadsheetSink(HttpSink):
    """Delivers rows to a spreadsheet receiver web app.

    Appends with ``{sheetName, data}``, merges by key with
    ``{sheetName, data, mode: "merge", keyColumn}`` and reads key columns back
    with ``GET ?action=getIds``.
    """

    url_key = "web_app_url"
    default_timeout = 30

    def __init__(self, config: SinkConfig, session: Optional[aiohttp.ClientSession] = None):
        super().__init__(config, session=session)
        self.sheet_name = self.config.config.get("sheet_name") or DEFAULT_SHEET_NAME

    async def write(self, data: List[Dict[str, Any]]) -> SinkResult:
        started = time.monotonic()
        payload = {'sheetName': self.sheet_name, 'data': data}
        status, body = await self._request_json('POST', json=payload)
        result = result_from_response(status, body, f"{len(data)} items sent")
        self._record(len(data), result, started)
        logger.debug(f"Spreadsheet append to '{self.sheet_name}': {result.message}")
        return result

    async def merge(self, rows: List[Dict[str, Any]], key_column: str) -> SinkResult:
        started = time.monotonic()
        payload = {
            'sheetName': self.sheet_name,
            'data': rows,
            'mode': 'merge',
            'keyColumn': key_column
        }
        status, body = await self._request_json('POST', json=payload)
        result = result_from_response(status, body, f"{len(rows)} rows merged")
        self._record(len(rows), result, started, merged=True)
        return result

    async def get_ids(
        self,
        column: str,
        start: int = 0,
        limit: int = DEFAULT_ID_BATCH,
        sheet: Optional[str] = None
    ) -> KeyPage:
        """Read one page of identifiers from a sheet column.

        Raises:
            SinkError: If the receiver reports a failure
        """
        params = {
            'action': 'getIds',
            'sheet': sheet or self.sheet_name,
            'column': column,
            'start': str(start),
            'limit': str(limit)
        }
        status, body = await self._request_json('GET', params=params)
        if not isinstance(body, dict) or not body.get('success'):
            error = body.get('error') if isinstance(body, dict) else None
            raise SinkError(error or f"Reading ids failed with HTTP {status}")

        ids = [str(i) for i in body.get('ids') or []]
        return KeyPage(
            ids=ids,
            total=parse_int(body.get('total')) or 0,
            returned=parse_int(body.get('returned')) or len(ids),
            has_more=bool(body.get('hasMore')),
            next_start=parse_int(body.get('nextStart'))
        )


class SpreadsheetKeySource:
    """Key source reading one column of a spreadsheet receiver."""

    def __init__(self, sink: SpreadsheetSink, column: str, sheet: Optional[str] = None):
        self.sink = sink
        self.column = column
        self.sheet = sheet

    async def fetch_keys(self, start: int, limit: int) -> KeyPage:
        return await self.sink.get_ids(self.column, start=start, limit=limit, sheet=self.sheet)
