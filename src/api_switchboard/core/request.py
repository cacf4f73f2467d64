import json
from typing import Any, Dict, Iterable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class RequestDescriptor(BaseModel):
    """Normalized HTTP request, immutable per fetch attempt.

    ``url`` holds origin and path only; a query string found in the URL is
    moved into ``query_params`` (explicit params win). Page transitions never
    mutate a descriptor, they derive a new one.
    """
    model_config = ConfigDict(frozen=True)

    method: str = "GET"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)    # Case preserved as given
    query_params: Dict[str, str] = Field(default_factory=dict)
    raw_query: Optional[str] = None                          # Next-page query string, sent verbatim
    body: Optional[Any] = None

    @model_validator(mode='before')
    @classmethod
    def split_query_string(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get('url'), str):
            return data
        parts = urlsplit(data['url'].strip())
        if not parts.query:
            return data
        params = dict(parse_qsl(parts.query, keep_blank_values=True))
        params.update(data.get('query_params') or {})
        return {
            **data,
            'url': urlunsplit((parts.scheme, parts.netloc, parts.path, '', '')),
            'query_params': params
        }

    @field_validator('method')
    @classmethod
    def normalize_method(cls, v: str) -> str:
        return (v or "GET").upper()

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v:
            raise ValueError("url must not be empty")
        return v

    @field_validator('headers', 'query_params', mode='before')
    @classmethod
    def stringify_values(cls, v: Any) -> Dict[str, str]:
        if v is None:
            return {}
        return {str(k): "" if val is None else str(val) for k, val in dict(v).items()}

    @property
    def full_url(self) -> str:
        """URL including the encoded query string."""
        if self.raw_query:
            return f"{self.url}?{self.raw_query}"
        if not self.query_params:
            return self.url
        return f"{self.url}?{urlencode(self.query_params)}"

    def _derive(self, **updates: Any) -> 'RequestDescriptor':
        data = self.model_dump()
        data.update(updates)
        return type(self)(**data)

    def with_params(
        self,
        updates: Optional[Dict[str, Any]] = None,
        remove: Iterable[str] = ()
    ) -> 'RequestDescriptor':
        """New descriptor with query params overridden and/or removed."""
        params = {k: v for k, v in self.query_params.items() if k not in set(remove)}
        params.update({k: str(v) for k, v in (updates or {}).items()})
        return self._derive(query_params=params, raw_query=None)

    def with_url(self, url: str) -> 'RequestDescriptor':
        """New descriptor for a complete URL; existing query params are dropped.

        The query string is kept as given, so repeated keys survive. The
        parsed ``query_params`` are for inspection only.
        """
        query = urlsplit(url.strip()).query
        return self._derive(url=url, query_params={}, raw_query=query or None)

    def substitute(self, token: str, value: str) -> 'RequestDescriptor':
        """Replace a literal placeholder token in URL, param values and body."""
        return self._derive(
            url=self.url.replace(token, value),
            query_params={k: v.replace(token, value) for k, v in self.query_params.items()},
            raw_query=self.raw_query.replace(token, value) if self.raw_query else None,
            body=_substitute_body(self.body, token, value)
        )

    def encoded_body(self) -> Optional[str]:
        if self.body is None:
            return None
        if isinstance(self.body, str):
            return self.body
        return json.dumps(self.body)


def _substitute_body(body: Any, token: str, value: str) -> Any:
    if isinstance(body, str):
        return body.replace(token, value)
    if isinstance(body, dict):
        return {k: _substitute_body(v, token, value) for k, v in body.items()}
    if isinstance(body, list):
        return [_substitute_body(v, token, value) for v in body]
    return body


class HttpResult(BaseModel):
    """Outcome of one governed HTTP call.

    Either a structured response (``status`` set) or a failure without a
    response (``network_error``), or a wait that was cut short by
    cancellation.
    """
    status: Optional[int] = None
    status_text: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)    # Lower-cased names
    body: Any = None
    error: Optional[str] = None
    network_error: bool = False
    cancelled: bool = False
    elapsed_ms: float = 0.0
    attempts: int = 1

    @field_validator('headers', mode='before')
    @classmethod
    def lower_header_names(cls, v: Any) -> Dict[str, str]:
        if v is None:
            return {}
        return {str(k).lower(): str(val) for k, val in dict(v).items()}

    @property
    def ok(self) -> bool:
        return self.status is not None and 200 <= self.status < 300 and not self.error

    @property
    def rate_limited(self) -> bool:
        return self.status == 429

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    def describe_error(self) -> str:
        if self.error:
            return self.error
        if self.status is not None and not self.ok:
            return f"HTTP {self.status} {self.status_text}".strip()
        return ""

    @classmethod
    def network_failure(cls, message: str, attempts: int = 1) -> 'HttpResult':
        return cls(error=f"Network error: {message}", network_error=True, attempts=attempts)

    @classmethod
    def cancelled_result(cls) -> 'HttpResult':
        return cls(error="Cancelled", cancelled=True, attempts=0)
