import asyncio
import json
import time
from typing import Any, Dict, Optional, Protocol

import aiohttp
from loguru import logger

from api_switchboard.core.errors import TransportError
from api_switchboard.core.request import HttpResult, RequestDescriptor


class Transport(Protocol):
    """Capability that issues one HTTP request.

    Returns a result for every HTTP response, whatever its status, and
    raises ``TransportError`` when no response was received.
    """

    async def send(self, request: RequestDescriptor) -> HttpResult:
        ...


async def read_body(response: aiohttp.ClientResponse) -> Any:
    """Decode a response body as JSON when possible, else as text."""
    text = await response.text()
    if not text:
        return None
    content_type = response.headers.get('Content-Type', '')
    try:
        return json.loads(text)
    except ValueError:
        if 'json' in content_type:
            logger.warning(f"Response declared {content_type} but is not valid JSON")
        return text


class AiohttpTransport:
    """Default transport backed by a shared aiohttp session."""

    def __init__(
        self,
        timeout: float = 30,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.timeout = timeout
        self.session = session
        self._owns_session = session is None
        self._metrics = {
            'requests_sent': 0,
            'transport_errors': 0,
            'bytes_received': 0
        }

    async def __aenter__(self) -> 'AiohttpTransport':
        """Async context manager entry."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit with proper cleanup."""
        await self.cleanup()

    async def _ensure_session(self) -> None:
        if not self.session:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True

    async def cleanup(self) -> None:
        """Close the session if this transport created it."""
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    def _request_kwargs(self, request: RequestDescriptor) -> Dict[str, Any]:
        # Host is derived from the URL, a copied Host header would be wrong
        headers = {k: v for k, v in request.headers.items() if k.lower() != 'host'}
        kwargs: Dict[str, Any] = {
            'params': None if request.raw_query else request.query_params or None,
            'headers': headers
        }
        if request.body is not None and request.method not in ('GET', 'HEAD'):
            if isinstance(request.body, (dict, list)):
                kwargs['json'] = request.body
            else:
                kwargs['data'] = str(request.body)
        return kwargs

    async def send(self, request: RequestDescriptor) -> HttpResult:
        await self._ensure_session()
        start_time = time.monotonic()
        logger.debug(f"{request.method} {request.full_url}")
        self._metrics['requests_sent'] += 1
        url = request.full_url if request.raw_query else request.url

        try:
            async with self.session.request(
                request.method, url, **self._request_kwargs(request)
            ) as response:
                body = await read_body(response)
                self._metrics['bytes_received'] += response.content_length or 0
                return HttpResult(
                    status=response.status,
                    status_text=response.reason or "",
                    headers=dict(response.headers),
                    body=body,
                    elapsed_ms=(time.monotonic() - start_time) * 1000
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._metrics['transport_errors'] += 1
            raise TransportError(str(e) or e.__class__.__name__) from e

    def get_metrics(self) -> Dict[str, Any]:
        return self._metrics.copy()
