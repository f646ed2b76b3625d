"""
httpmock Response

Configured responses and the writer that serializes them onto an ASGI send
channel.

Features:
- Status, ordered multi-value headers, body
- Lazy body producers (sync or async iterables) streamed chunk by chunk
- Optional delay before writing to simulate latency
- I/O failures and client disconnects returned as WriteFailed values instead of raised
"""

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from .errors import ClientDisconnected, WriteFailed

logger = logging.getLogger("httpmock.response")

BodyProducer = Callable[[], Union[Iterable[bytes], AsyncIterable[bytes]]]
Body = Union[bytes, BodyProducer]
Send = Callable[[Dict[str, Any]], Awaitable[None]]
Receive = Callable[[], Awaitable[Dict[str, Any]]]


def to_bytes(value: Union[str, bytes, bytearray]) -> bytes:
    """Encode str as UTF-8; pass bytes through."""
    if isinstance(value, str):
        return value.encode('utf-8')
    return bytes(value)


@dataclass
class Response:
    """
    A configured HTTP response.

    Owned by its Expectation. Mock.requested hands out a copy, so a response
    being written is never affected by later builder calls.
    """

    status: int = 200
    headers: Dict[str, List[str]] = field(default_factory=dict)
    body: Body = b""
    delay: Optional[float] = None  # seconds

    def add_header(self, name: str, *values: str):
        """Append values to a header, keeping first-declared order."""
        self.headers.setdefault(name, []).extend(values)

    def set_header(self, name: str, *values: str):
        """Replace all values of a header."""
        for existing in list(self.headers):
            if existing.lower() == name.lower():
                del self.headers[existing]
        self.headers[name] = list(values)

    def has_header(self, name: str) -> bool:
        return any(existing.lower() == name.lower() for existing in self.headers)

    @property
    def is_streaming(self) -> bool:
        return callable(self.body)

    def header_items(self) -> List[Tuple[str, str]]:
        """Flatten headers to (name, value) pairs, one per value."""
        return [(name, value) for name, values in self.headers.items() for value in values]

    def copy(self) -> "Response":
        return Response(
            status=self.status,
            headers={name: list(values) for name, values in self.headers.items()},
            body=self.body,
            delay=self.delay
        )

    def describe(self) -> str:
        body = "<stream>" if self.is_streaming else f"{len(self.body)} bytes"
        delay = f", delay={self.delay}s" if self.delay else ""
        return f"{self.status} ({body}{delay})"

    @classmethod
    def not_found(cls, status: int = 404) -> "Response":
        """Synthetic response for unmatched requests. The body is always empty."""
        return cls(status=status)

    @classmethod
    def json(cls, payload: Any, status: int = 200) -> "Response":
        response = cls(status=status, body=json.dumps(payload).encode('utf-8'))
        response.set_header('Content-Type', 'application/json')
        return response


class ResponseWriter:
    """
    Writes a Response onto an ASGI `send` channel.

    The writer never raises for I/O failures: it returns a WriteFailed value
    describing what went wrong, or None on success. Exceptions raised by a
    lazy body producer are not I/O failures and propagate to the caller.

    Servers such as uvicorn silently drop writes once the client is gone.
    Pass the ASGI `receive` channel and the writer also watches it for
    `http.disconnect`, abandoning the write (delay included) when it arrives.

    Example:
        writer = ResponseWriter()
        error = await writer.write(response, send, receive=receive)
        if error:
            mock.fail("failed to write response: %s", error)
    """

    # Errors that mean the client went away or the sink is closed
    io_errors: Tuple[type, ...] = (OSError, EOFError)

    def __init__(self, sleep: Optional[Callable[[float], Awaitable[None]]] = None):
        self._sleep = sleep or asyncio.sleep

    async def write(
        self,
        response: Response,
        send: Send,
        method: str = "GET",
        receive: Optional[Receive] = None
    ) -> Optional[WriteFailed]:
        """
        Write status, headers and body.

        Args:
            response: Response to write (treated as read-only)
            send: ASGI send callable
            method: Request method; HEAD responses carry no body
            receive: Optional ASGI receive callable watched for client disconnects

        Returns:
            WriteFailed if the sink refused a write or the client disconnected,
            otherwise None
        """
        if receive is None:
            return await self._write(response, send, method)

        started = False

        async def tracking_send(message):
            nonlocal started
            await send(message)
            if message['type'] == 'http.response.start':
                started = True

        writing = asyncio.ensure_future(self._write(response, tracking_send, method))
        watching = asyncio.ensure_future(wait_for_disconnect(receive))
        try:
            await asyncio.wait({writing, watching}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            writing.cancel()
            raise
        finally:
            watching.cancel()

        # A write that finished wins over a disconnect seen at the same time
        if writing.done():
            return writing.result()

        writing.cancel()
        await asyncio.gather(writing, return_exceptions=True)
        stage = "body" if started else "start"
        logger.debug(f"Client disconnected during {stage}")
        return WriteFailed(cause=ClientDisconnected("client disconnected"), stage=stage)

    async def _write(self, response: Response, send: Send, method: str) -> Optional[WriteFailed]:
        if response.delay and response.delay > 0:
            await self._sleep(response.delay)

        include_body = method.upper() != "HEAD"
        headers = response.header_items()
        if not response.is_streaming and not response.has_header('content-length'):
            headers.append(('content-length', str(len(response.body))))

        try:
            await send({
                'type': 'http.response.start',
                'status': response.status,
                'headers': [
                    (name.lower().encode('latin-1'), value.encode('latin-1'))
                    for name, value in headers
                ]
            })
        except self.io_errors as e:
            logger.debug(f"Client went away before status line: {e!r}")
            return WriteFailed(cause=e, stage="start")

        try:
            if not include_body:
                await send({'type': 'http.response.body', 'body': b'', 'more_body': False})
            elif response.is_streaming:
                await self._write_stream(response.body, send)
            else:
                await send({'type': 'http.response.body', 'body': response.body, 'more_body': False})
        except self.io_errors as e:
            logger.debug(f"Client went away while writing body: {e!r}")
            return WriteFailed(cause=e, stage="body")

        return None

    async def _write_stream(self, producer: BodyProducer, send: Send):
        chunks = producer()
        if inspect.isawaitable(chunks):
            chunks = await chunks

        if hasattr(chunks, '__aiter__'):
            async for chunk in chunks:
                await send({'type': 'http.response.body', 'body': to_bytes(chunk), 'more_body': True})
        else:
            for chunk in chunks:
                await send({'type': 'http.response.body', 'body': to_bytes(chunk), 'more_body': True})

        await send({'type': 'http.response.body', 'body': b'', 'more_body': False})


async def wait_for_disconnect(receive: Receive) -> Dict[str, Any]:
    """Drain `receive` until the client disconnects."""
    while True:
        message = await receive()
        if message['type'] == 'http.disconnect':
            return message
