"""Parse a curl invocation string into a RequestDescriptor."""
import base64
import json
import shlex
from typing import Any, Dict, List, Optional

from loguru import logger

from api_switchboard.core.errors import RequestParseError
from api_switchboard.core.request import RequestDescriptor

DATA_FLAGS = {'-d', '--data', '--data-raw', '--data-binary', '--data-urlencode', '--data-ascii'}
HEADER_FLAGS = {'-H', '--header'}
METHOD_FLAGS = {'-X', '--request'}
USER_FLAGS = {'-u', '--user'}

# Flags that take a value we don't use
IGNORED_VALUE_FLAGS = {
    '-o', '--output', '-A', '--user-agent', '-e', '--referer', '-b', '--cookie',
    '-m', '--max-time', '--connect-timeout', '-x', '--proxy', '-w', '--write-out'
}


def _normalize(raw: str) -> str:
    # Line continuations (POSIX shell, Windows cmd, PowerShell)
    for continuation in ('\\\r\n', '\\\n', '^\r\n', '^\n', '`\r\n', '`\n'):
        raw = raw.replace(continuation, ' ')
    return raw.strip()


def _parse_body(body: str) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        return body


def parse_curl(curl_string: str) -> RequestDescriptor:
    """Turn a curl command line into a RequestDescriptor.

    Raises:
        RequestParseError: If the input is not a usable curl command
    """
    if not curl_string or not isinstance(curl_string, str):
        raise RequestParseError("Invalid input: please paste a cURL command")

    try:
        tokens: List[str] = shlex.split(_normalize(curl_string))
    except ValueError as e:
        raise RequestParseError(f"Could not tokenize cURL command: {e}")

    if tokens and tokens[0].lower() == 'curl':
        tokens = tokens[1:]
    if not tokens:
        raise RequestParseError("No URL provided in cURL command")

    method: Optional[str] = None
    url: Optional[str] = None
    headers: Dict[str, str] = {}
    body: Optional[Any] = None

    i = 0
    while i < len(tokens):
        token = tokens[i]
        value = tokens[i + 1] if i + 1 < len(tokens) else None

        if token in METHOD_FLAGS:
            if value is None:
                raise RequestParseError(f"Missing value for {token}")
            method = value.upper()
            i += 2
        elif token in HEADER_FLAGS:
            if value is None:
                raise RequestParseError(f"Missing value for {token}")
            name, sep, header_value = value.partition(':')
            if sep and name.strip():
                headers[name.strip()] = header_value.strip()
            else:
                logger.warning(f"Ignoring malformed header: {value}")
            i += 2
        elif token in DATA_FLAGS:
            if value is None:
                raise RequestParseError(f"Missing value for {token}")
            body = _parse_body(value)
            i += 2
        elif token in USER_FLAGS:
            if value is None:
                raise RequestParseError(f"Missing value for {token}")
            credentials = base64.b64encode(value.encode()).decode()
            headers.setdefault('Authorization', f"Basic {credentials}")
            i += 2
        elif token == '--url':
            url = value
            i += 2
        elif token in IGNORED_VALUE_FLAGS:
            i += 2
        elif token.startswith('-'):
            # --compressed, -L, -s, -k, -i and friends
            i += 1
        else:
            if url is None:
                url = token
            i += 1

    if not url:
        raise RequestParseError("No URL provided in cURL command")
    if not url.lower().startswith(('http://', 'https://')):
        url = f"https://{url}"

    if method is None:
        method = 'POST' if body is not None else 'GET'

    logger.debug(f"Parsed cURL: {method} {url}")
    try:
        return RequestDescriptor(method=method, url=url, headers=headers, body=body)
    except ValueError as e:
        raise RequestParseError(str(e))
