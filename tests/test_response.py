"""
Tests for httpmock Response and ResponseWriter

Tests the response model and writer including:
- Status, ordered multi-value headers and body
- Content-Length handling
- Delays
- Streaming bodies from sync and async producers
- HEAD requests
- Write failures and client disconnects returned as values
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from httpmock.errors import ClientDisconnected, WriteFailed
from httpmock.response import Response, ResponseWriter


class RecordingSink:
    """ASGI send stand-in that records messages, optionally failing."""

    def __init__(self, fail_on=None):
        self.messages = []
        self.fail_on = fail_on

    async def __call__(self, message):
        if self.fail_on and message['type'] == self.fail_on:
            raise ConnectionResetError('client went away')
        self.messages.append(message)

    @property
    def start(self):
        return self.messages[0]

    @property
    def body(self):
        return b''.join(m['body'] for m in self.messages[1:])


def write(response, sink, method='GET', writer=None, receive=None):
    writer = writer or ResponseWriter()
    return asyncio.run(writer.write(response, sink, method, receive))


class TestResponse:
    """Test Response model."""

    def test_defaults(self):
        response = Response()

        assert response.status == 200
        assert response.headers == {}
        assert response.body == b''
        assert response.delay is None

    def test_add_header_keeps_order(self):
        response = Response()
        response.add_header('X-B', '1')
        response.add_header('X-A', '2')
        response.add_header('X-B', '3')

        assert response.header_items() == [('X-B', '1'), ('X-B', '3'), ('X-A', '2')]

    def test_set_header_replaces_case_insensitively(self):
        response = Response()
        response.add_header('content-type', 'text/plain')
        response.set_header('Content-Type', 'application/json')

        assert response.headers == {'Content-Type': ['application/json']}

    def test_copy_is_independent(self):
        response = Response(status=201, headers={'X-Test': ['a']}, body=b'x')
        copy = response.copy()
        copy.headers['X-Test'].append('b')

        assert response.headers == {'X-Test': ['a']}
        assert copy.status == 201

    def test_not_found(self):
        response = Response.not_found()

        assert response.status == 404
        assert response.body == b''

    def test_json(self):
        response = Response.json({'ok': True}, status=201)

        assert response.body == b'{"ok": true}'
        assert response.headers == {'Content-Type': ['application/json']}


class TestResponseWriter:
    """Test ResponseWriter."""

    def test_round_trip(self):
        """Test status, repeated headers and body are written as configured."""
        response = Response(status=201, headers={'X-Test': ['a', 'b']}, body=b'hello')
        sink = RecordingSink()

        error = write(response, sink)

        assert error is None
        assert sink.start['type'] == 'http.response.start'
        assert sink.start['status'] == 201
        assert sink.start['headers'] == [
            (b'x-test', b'a'),
            (b'x-test', b'b'),
            (b'content-length', b'5'),
        ]
        assert sink.body == b'hello'
        assert sink.messages[-1]['more_body'] is False

    def test_declared_content_length_kept(self):
        response = Response(headers={'Content-Length': ['5']}, body=b'hello')
        sink = RecordingSink()

        write(response, sink)

        assert sink.start['headers'] == [(b'content-length', b'5')]

    def test_delay_before_writing(self):
        """Test the configured delay is awaited before anything is sent."""
        sleep = AsyncMock()
        sink = RecordingSink()

        write(Response(delay=0.25), sink, writer=ResponseWriter(sleep=sleep))

        sleep.assert_awaited_once_with(0.25)
        assert sink.start['status'] == 200

    def test_no_delay_by_default(self):
        sleep = AsyncMock()

        write(Response(), RecordingSink(), writer=ResponseWriter(sleep=sleep))

        sleep.assert_not_awaited()

    def test_streaming_sync_producer(self):
        """Test lazy producers are streamed chunk by chunk without Content-Length."""
        response = Response(body=lambda: iter([b'ab', 'cd', b'ef']))
        sink = RecordingSink()

        write(response, sink)

        assert sink.start['headers'] == []
        assert [m['body'] for m in sink.messages[1:]] == [b'ab', b'cd', b'ef', b'']
        assert [m['more_body'] for m in sink.messages[1:]] == [True, True, True, False]

    def test_streaming_async_producer(self):
        async def chunks():
            yield b'one'
            yield b'two'

        sink = RecordingSink()

        write(Response(body=chunks), sink)

        assert sink.body == b'onetwo'

    def test_producer_called_per_write(self):
        """Test each write gets a fresh iterator from the producer."""
        response = Response(body=lambda: [b'x', b'y'])

        first, second = RecordingSink(), RecordingSink()
        write(response.copy(), first)
        write(response.copy(), second)

        assert first.body == second.body == b'xy'

    def test_head_has_no_body(self):
        sink = RecordingSink()

        write(Response(body=b'hello'), sink, method='HEAD')

        assert (b'content-length', b'5') in sink.start['headers']
        assert sink.body == b''

    def test_failure_on_start_returned(self):
        """Test a closed sink yields WriteFailed instead of raising."""
        error = write(Response(body=b'x'), RecordingSink(fail_on='http.response.start'))

        assert isinstance(error, WriteFailed)
        assert error.stage == 'start'
        assert isinstance(error.cause, ConnectionResetError)
        assert 'start' in str(error)

    def test_failure_on_body_returned(self):
        error = write(Response(body=b'x'), RecordingSink(fail_on='http.response.body'))

        assert isinstance(error, WriteFailed)
        assert error.stage == 'body'

    def test_producer_error_propagates(self):
        """Test a broken producer is a fault, not a write failure."""
        def broken():
            raise RuntimeError('producer exploded')

        with pytest.raises(RuntimeError):
            write(Response(body=broken), RecordingSink())


async def disconnect_after(seconds):
    await asyncio.sleep(seconds)
    return {'type': 'http.disconnect'}


async def never_disconnect():
    await asyncio.sleep(60)
    return {'type': 'http.disconnect'}


class TestDisconnectWatching:
    """Test ResponseWriter watching the receive channel."""

    def test_disconnect_during_delay(self):
        """Test a disconnect abandons the delay before anything is sent."""
        sink = RecordingSink()

        error = write(Response(body=b'late', delay=30), sink, receive=lambda: disconnect_after(0))

        assert isinstance(error, WriteFailed)
        assert error.stage == 'start'
        assert isinstance(error.cause, ClientDisconnected)
        assert sink.messages == []

    def test_disconnect_mid_stream(self):
        async def chunks():
            yield b'first'
            await asyncio.sleep(30)
            yield b'never'

        sink = RecordingSink()

        error = write(Response(body=chunks), sink, receive=lambda: disconnect_after(0.05))

        assert error.stage == 'body'
        assert sink.body == b'first'

    def test_request_messages_ignored(self):
        """Test leftover request messages are not mistaken for a disconnect."""
        messages = iter([{'type': 'http.request', 'body': b'', 'more_body': False}])

        async def receive():
            message = next(messages, None)
            if message is not None:
                return message
            return await never_disconnect()

        sink = RecordingSink()

        error = write(Response(body=b'ok', delay=0.05), sink, receive=receive)

        assert error is None
        assert sink.body == b'ok'

    def test_completed_write_wins(self):
        sink = RecordingSink()

        error = write(Response(body=b'hello'), sink, receive=never_disconnect)

        assert error is None
        assert sink.start['status'] == 200
        assert sink.body == b'hello'

    def test_producer_error_still_propagates(self):
        def broken():
            raise RuntimeError('producer exploded')

        with pytest.raises(RuntimeError):
            write(Response(body=broken), RecordingSink(), receive=never_disconnect)
