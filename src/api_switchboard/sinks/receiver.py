"""Reference spreadsheet receiver.

An in-memory workbook speaking the same HTTP contract as the spreadsheet
web app the ``SpreadsheetSink`` talks to: append and merge envelopes on
POST, health info and paginated id reads on GET. Used for local runs and
as the counterpart in tests.
"""
import json
from datetime import datetime, UTC
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, Request
from loguru import logger
from pydantic import BaseModel

from api_switchboard.core.errors import SwitchboardError

TIMESTAMP_COLUMN = "_timestamp"
DEFAULT_SHEET_NAME = "API_Data"
DEFAULT_ID_LIMIT = 500
MAX_ID_LIMIT = 1000
MAX_SHEET_NAME = 100
BLANK_CELLS = {"", "undefined", "null", "None"}


class ReceiverError(SwitchboardError):
    """Raised when a payload cannot be applied to the workbook."""
    pass


class MergeReport(BaseModel):
    matched: int = 0
    not_found: int = 0
    new_columns: int = 0

    @property
    def message(self) -> str:
        return (
            f"Merged {self.matched} rows, {self.not_found} IDs not found, "
            f"{self.new_columns} new columns added"
        )


def cell_value(value: Any) -> Any:
    # Nested values are stored as JSON text in a single cell
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if value is None:
        return ""
    return value


def _is_blank(value: Any) -> bool:
    return str(value).strip() in BLANK_CELLS


class Sheet:
    def __init__(self, name: str):
        self.name = name
        self.headers: List[str] = []
        self.rows: List[Dict[str, Any]] = []

    def _add_headers(self, keys: List[str]) -> List[str]:
        added = [key for key in keys if key not in self.headers]
        self.headers.extend(added)
        return added

    def append(self, data: Any) -> str:
        if isinstance(data, list):
            if not data:
                return "Empty array - nothing to write"
            items = data
        elif isinstance(data, dict):
            items = [data]
        else:
            items = [{'value': str(data)}]

        keys: List[str] = []
        for item in items:
            if isinstance(item, dict):
                keys.extend(key for key in item if key not in keys)

        if TIMESTAMP_COLUMN not in self.headers:
            self.headers.insert(0, TIMESTAMP_COLUMN)
        self._add_headers(keys)

        now = datetime.now(UTC).isoformat()
        for item in items:
            source = item if isinstance(item, dict) else {}
            row = {TIMESTAMP_COLUMN: now}
            row.update({key: cell_value(source.get(key)) for key in keys})
            self.rows.append(row)

        if len(items) == 1 and not isinstance(data, list):
            return f"Written 1 row with {len(keys)} columns"
        return f"Written {len(items)} rows with {len(keys)} columns"

    def merge(self, data: List[Any], key_column: str) -> MergeReport:
        """Write incoming fields into the rows whose key matches.

        Unknown keys are counted and skipped, never appended.
        """
        if not self.headers:
            raise ReceiverError("Sheet is empty, nothing to merge into")
        if key_column not in self.headers:
            available = ", ".join(h for h in self.headers if h)
            raise ReceiverError(f"Key column '{key_column}' not found. Available: {available}")
        if not self.rows:
            raise ReceiverError("Sheet has headers but no data rows")

        key_map: Dict[str, Dict[str, Any]] = {}
        for row in self.rows:
            key = str(row.get(key_column, "")).strip()
            if not _is_blank(key):
                key_map[key] = row

        incoming: List[str] = []
        for item in data:
            if isinstance(item, dict):
                incoming.extend(k for k in item if k != key_column and k not in incoming)
        added = self._add_headers(incoming)

        report = MergeReport(new_columns=len(added))
        for item in data:
            if not isinstance(item, dict):
                continue
            key = item.get(key_column)
            row = key_map.get(str("" if key is None else key).strip())
            if row is None:
                report.not_found += 1
                continue
            report.matched += 1
            for field, value in item.items():
                if field != key_column:
                    row[field] = cell_value(value)
        return report

    def column_values(self, column: str) -> List[Any]:
        return [row.get(column, "") for row in self.rows]


class Workbook:
    """Named sheets held in memory."""

    def __init__(self):
        self.sheets: Dict[str, Sheet] = {}

    def get(self, name: str) -> Optional[Sheet]:
        return self.sheets.get(name)

    def get_or_create(self, name: str) -> Sheet:
        if name not in self.sheets:
            logger.info(f"Creating sheet '{name}'")
            self.sheets[name] = Sheet(name)
        return self.sheets[name]

    def receive(self, payload: Any) -> Dict[str, Any]:
        """Apply an append or merge payload; returns the response envelope."""
        try:
            return {'success': True, **self._apply(payload)}
        except ReceiverError as e:
            logger.warning(f"Receiver rejected payload: {str(e)}")
            return {'success': False, 'error': str(e)}

    def _apply(self, payload: Any) -> Dict[str, Any]:
        sheet_name = DEFAULT_SHEET_NAME
        data = payload

        is_envelope = isinstance(payload, dict) and 'data' in payload and 'sheetName' in payload
        if is_envelope:
            sheet_name = str(payload.get('sheetName') or DEFAULT_SHEET_NAME)[:MAX_SHEET_NAME]
            data = payload['data']

            if payload.get('mode') == 'merge' and payload.get('keyColumn'):
                sheet = self.get(sheet_name)
                if sheet is None:
                    raise ReceiverError(f"Sheet '{sheet_name}' not found for merge")
                if not isinstance(data, list):
                    raise ReceiverError("merge mode requires data to be an array")
                if not data:
                    return {'result': "Empty data array - nothing to merge"}
                report = sheet.merge(data, str(payload['keyColumn']))
                return {
                    'result': report.message,
                    'matched': report.matched,
                    'notFound': report.not_found,
                    'newColumns': report.new_columns
                }

        return {'result': self.get_or_create(sheet_name).append(data)}

    def get_ids(self, sheet_name: str, column: str, start: int = 0,
                limit: int = DEFAULT_ID_LIMIT) -> Dict[str, Any]:
        sheet = self.get(sheet_name)
        if sheet is None:
            return {'success': False, 'error': f"Sheet '{sheet_name}' not found"}
        if not sheet.headers:
            return {'success': False, 'error': "Sheet is empty"}
        if column not in sheet.headers:
            return {
                'success': False,
                'error': f"Column '{column}' not found in headers",
                'availableHeaders': [h for h in sheet.headers if h]
            }

        start = max(start, 0)
        limit = min(limit if limit > 0 else DEFAULT_ID_LIMIT, MAX_ID_LIMIT)
        total = len(sheet.rows)
        read_count = min(limit, total - start)
        if read_count <= 0:
            return {'success': True, 'ids': [], 'total': total, 'returned': 0, 'hasMore': False}

        values = sheet.column_values(column)[start:start + read_count]
        ids = [str(v) for v in values if not _is_blank(v)]
        return {
            'success': True,
            'ids': ids,
            'total': total,
            'returned': len(ids),
            'startIndex': start,
            'hasMore': start + read_count < total,
            'nextStart': start + read_count
        }

    def health(self, sheet_name: str) -> Dict[str, Any]:
        sheet = self.get(sheet_name)
        # Header row counts as a row, as in a real sheet
        rows = len(sheet.rows) + 1 if sheet and sheet.headers else 0
        return {
            'status': "ok",
            'message': "API Switchboard receiver is ready",
            'sheet': sheet_name,
            'rows': rows,
            'supportsSheetName': True,
            'supportsMerge': True
        }


def create_receiver_app(workbook: Optional[Workbook] = None) -> FastAPI:
    """HTTP app serving a workbook with the receiver contract."""
    workbook = workbook or Workbook()
    app = FastAPI(title="Spreadsheet Receiver")
    app.state.workbook = workbook

    @app.post("/")
    async def receive(request: Request) -> Dict:
        try:
            payload = await request.json()
        except ValueError as e:
            return {'success': False, 'error': f"Invalid JSON: {str(e)}"}
        return workbook.receive(payload)

    @app.get("/")
    async def read(
        action: str = "health",
        sheet: str = DEFAULT_SHEET_NAME,
        column: str = "id",
        start: int = 0,
        limit: int = DEFAULT_ID_LIMIT
    ) -> Dict:
        if action == "getIds":
            return workbook.get_ids(sheet, column, start=start, limit=limit)
        return workbook.health(sheet)

    return app


if __name__ == "__main__":
    uvicorn.run(create_receiver_app(), host="0.0.0.0", port=8090)
