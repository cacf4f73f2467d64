import time
from datetime import datetime, UTC
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger

from api_switchboard.core.sink import HttpSink, SinkConfig, SinkResult

DEFAULT_SOURCE = "API Switchboard"


class WebhookSink(HttpSink):
    """Posts each batch to a workflow webhook as ``{source, timestamp, data}``.

    There is no response contract: any 2xx counts as delivered.
    """

    url_key = "url"
    default_timeout = 15

    def __init__(self, config: SinkConfig, session: Optional[aiohttp.ClientSession] = None):
        super().__init__(config, session=session)
        self.source = self.config.config.get("source") or DEFAULT_SOURCE

    def build_payload(self, data: Any) -> Dict[str, Any]:
        return {
            'source': self.source,
            'timestamp': datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            'data': data
        }

    async def write(self, data: List[Dict[str, Any]]) -> SinkResult:
        started = time.monotonic()
        status, _ = await self._request_json('POST', json=self.build_payload(data))
        if 200 <= status < 300:
            result = SinkResult(success=True, status=status, result=f"{len(data)} items sent")
        else:
            result = SinkResult(success=False, status=status, error=f"HTTP {status}")
        self._record(len(data), result, started)
        logger.debug(f"Webhook delivery of {len(data)} items: HTTP {status}")
        return result
