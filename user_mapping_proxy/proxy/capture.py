"""Response capture: relay a backend response while keeping a copy of it.

Handlers need to look at the backend's status and body after the request has
been forwarded, and still answer the caller with exactly what the backend
produced. ``ResponseCapture`` decorates any ``ResponseSink`` and records what
passes through it; ``BufferedResponse`` is the sink handed to callers, turned
into a Starlette ``Response`` only once the handler is done.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import httpx
from starlette.responses import Response

# Hop-by-hop headers, the ones that stop being true once the body has been
# decoded and re-framed by this process, and the ones the server adds itself.
_RELAY_SKIP = frozenset({
    "connection", "keep-alive", "proxy-authenticate", "proxy-authorization",
    "te", "trailers", "transfer-encoding", "upgrade",
    "content-length", "content-encoding",
    "date", "server",
})


@runtime_checkable
class ResponseSink(Protocol):
    def set_status(self, status_code: int) -> None: ...

    def set_header(self, name: str, value: str) -> None: ...

    def write(self, chunk: bytes) -> int: ...


class BufferedResponse:
    """In-memory sink that becomes a Starlette ``Response`` on demand."""

    def __init__(self) -> None:
        self.status_code = 200
        self.headers: list[tuple[str, str]] = []
        self._chunks: list[bytes] = []

    def set_status(self, status_code: int) -> None:
        self.status_code = status_code

    def set_header(self, name: str, value: str) -> None:
        self.headers.append((name, value))

    def write(self, chunk: bytes) -> int:
        self._chunks.append(chunk)
        return len(chunk)

    def to_response(self) -> Response:
        response = Response(content=b"".join(self._chunks), status_code=self.status_code)
        for name, value in self.headers:
            if name.lower() == "content-type":
                response.headers["content-type"] = value
            else:
                response.headers.append(name, value)
        return response


class ResponseCapture:
    """Forward everything to *sink* and keep the status code and body.

    The status defaults to 200 when never set explicitly.
    """

    def __init__(self, sink: ResponseSink) -> None:
        self._sink = sink
        self.status_code = 200
        self.headers: dict[str, str] = {}
        self._body = bytearray()

    def set_status(self, status_code: int) -> None:
        self.status_code = status_code
        self._sink.set_status(status_code)

    def set_header(self, name: str, value: str) -> None:
        self.headers[name.lower()] = value
        self._sink.set_header(name, value)

    def write(self, chunk: bytes) -> int:
        self._body.extend(chunk)
        return self._sink.write(chunk)

    @property
    def body(self) -> bytes:
        return bytes(self._body)

    @property
    def ok(self) -> bool:
        return self.status_code == 200


async def relay(upstream: httpx.Response, sink: ResponseSink) -> None:
    """Copy an upstream response (status, end-to-end headers, body) into *sink*.

    *upstream* must have been sent with ``stream=True``; it is closed here.
    """
    try:
        sink.set_status(upstream.status_code)
        for name, value in upstream.headers.multi_items():
            if name.lower() not in _RELAY_SKIP:
                sink.set_header(name, value)
        async for chunk in upstream.aiter_bytes():
            sink.write(chunk)
    finally:
        await upstream.aclose()
