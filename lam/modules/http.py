"""
@lam/http — synchronous outbound HTTP for scripts.

Lua surface::

    local http = require('@lam/http')
    local res = http:fetch('https://example.com/api', {
      method = 'POST',
      headers = { ['Content-Type'] = 'application/json' },
      body = '{"a":1}',
    })
    res.status_code, res.ok, res.headers['content-type']
    res:json()          -- decode the (rest of the) body as JSON
    res:text()          -- rest of the body as a string
    res:read('*l')      -- same formats as io.read, over the body

A non-2xx status is an ordinary response.  The request may use only the time
left until the invocation's deadline, body included.
"""

import logging
from typing import Any, Optional

import requests
from lupa.lua54 import lua_type

from lam.engine.streams import InputCursor
from lam.exceptions import (
    CapabilityError,
    HTTPFetchError,
    ScriptTimeoutError,
    ValueConversionError,
)
from lam.value import String, Table, value_from_json

__all__ = ["HTTPCapability", "build"]

logger = logging.getLogger(__name__)

_METHODS = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")

# Used when the invocation has no deadline
DEFAULT_FETCH_TIMEOUT = 30.0

# Bytes read from the socket between two deadline checks
_CHUNK_SIZE = 8192


def _text(value: Any, what: str) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise CapabilityError(f"{what} must be a string, got {lua_type(value) or type(value).__name__}")


def _split_content_type(header: str) -> tuple[str, str]:
    """'text/html; charset=ISO-8859-1' → ('text/html', 'iso-8859-1')."""
    mime, _, params = header.partition(";")
    charset = "utf-8"
    for param in params.split(";"):
        key, _, val = param.strip().partition("=")
        if key.lower() == "charset" and val:
            charset = val.strip('"').lower()
    return mime.strip().lower(), charset


class HTTPResponse:
    """Lua-facing response; the body is consumed through an InputCursor."""

    def __init__(self, engine, response: requests.Response, body: bytes) -> None:
        self._bridge = engine.bridge
        self.status_code = response.status_code
        self.headers = {k.lower(): v for k, v in response.headers.items()}
        self.content_type, self.charset = _split_content_type(
            response.headers.get("Content-Type", "")
        )
        self.body = InputCursor(body)

    def read(self, fmt=None):
        return self.body.read(b"*l" if fmt is None else fmt)

    def read_unicode(self, fmt=None):
        return self.body.read_unicode(fmt)

    def text(self):
        return self.body.read(b"*a") or b""

    def json(self):
        if self.content_type != "application/json":
            logger.warning(
                "content type is %r, not application/json; decoding anyway",
                self.content_type,
            )
        try:
            value = value_from_json(self.body.read(b"*a") or b"")
        except ValueConversionError as exc:
            raise CapabilityError(f"response is not JSON: {exc}") from exc
        return self._bridge.to_lua(value)

    def to_lua(self, sandbox):
        headers = Table(fields={String(k): String(v) for k, v in self.headers.items()})
        return sandbox.module({
            b"status":       self.status_code,
            b"status_code":  self.status_code,
            b"ok":           200 <= self.status_code < 300,
            b"headers":      self._bridge.to_lua(headers),
            b"content_type": self.content_type.encode(),
            b"charset":      self.charset.encode(),
            b"json":         self.json,
            b"text":         self.text,
            b"read":         self.read,
            b"read_unicode": self.read_unicode,
        })


class HTTPCapability:
    """Turns fetch() calls into requests calls bounded by the invocation deadline."""

    def __init__(self, engine) -> None:
        self._engine = engine
        self._deadline = engine.context.deadline

    def _options(self, options: Any) -> dict:
        if options is None:
            return {}
        if lua_type(options) != "table":
            raise CapabilityError("fetch options must be a table")
        method = options[b"method"]
        headers = options[b"headers"]
        body = options[b"body"]

        kwargs: dict = {}
        if method is not None:
            kwargs["method"] = _text(method, "method").upper()
            if kwargs["method"] not in _METHODS:
                raise CapabilityError(f"unsupported HTTP method {kwargs['method']!r}")
        if headers is not None:
            if lua_type(headers) != "table":
                raise CapabilityError("fetch headers must be a table")
            kwargs["headers"] = {
                _text(k, "header name"): _text(v, "header value")
                for k, v in headers.items()
            }
        if body is not None:
            if not isinstance(body, bytes):
                raise CapabilityError("fetch body must be a string")
            kwargs["data"] = body
        return kwargs

    def _timeout(self) -> Optional[float]:
        remaining = self._deadline.remaining()
        if remaining is None:
            return DEFAULT_FETCH_TIMEOUT
        if remaining <= 0:
            raise ScriptTimeoutError("deadline passed before the request was sent")
        return remaining

    def _read_body(self, response: requests.Response, url: str) -> bytes:
        """Read the whole body, giving up as soon as the deadline has passed."""
        chunks = []
        try:
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                chunks.append(chunk)
                if self._deadline.passed():
                    break
        except requests.RequestException as exc:
            if self._deadline.passed():
                raise ScriptTimeoutError(f"deadline passed while reading {url}") from exc
            raise HTTPFetchError(f"reading the response from {url} failed: {exc}") from exc
        if self._deadline.passed():
            raise ScriptTimeoutError(f"deadline passed while reading {url}")
        return b"".join(chunks)

    def fetch(self, url, options=None):
        """
        Raises:
            CapabilityError:    Malformed url or options.
            HTTPFetchError:     Connection, TLS or protocol failure.
            ScriptTimeoutError: The deadline passed before the whole body arrived.
        """
        url = _text(url, "url")
        kwargs = self._options(options)
        method = kwargs.pop("method", "GET")
        logger.debug("fetch %s %s", method, url)
        try:
            response = requests.request(
                method, url, timeout=self._timeout(), stream=True, **kwargs
            )
        except requests.Timeout as exc:
            if self._deadline.passed():
                raise ScriptTimeoutError(f"deadline passed while fetching {url}") from exc
            raise HTTPFetchError(f"request to {url} timed out") from exc
        except (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema,
                requests.exceptions.InvalidSchema) as exc:
            raise CapabilityError(f"invalid url {url!r}: {exc}") from exc
        except requests.RequestException as exc:
            raise HTTPFetchError(f"request to {url} failed: {exc}") from exc
        try:
            body = self._read_body(response, url)
        finally:
            response.close()
        return HTTPResponse(self._engine, response, body).to_lua(self._engine.sandbox)


def build(engine):
    """Module table for require('@lam/http')."""
    capability = HTTPCapability(engine)
    return engine.sandbox.module({b"fetch": capability.fetch})
