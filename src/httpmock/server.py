"""
httpmock Server

FastAPI-based test server that answers real HTTP requests from a Mock.

Features:
- Catch-all dispatch: request snapshot -> Mock.requested -> ResponseWriter
- Fault policy: recover from unexpected faults with a 404, or let them propagate
- Plain or TLS listener on an ephemeral port, served by uvicorn on a
  background thread
- Optional admin API to inspect expectations, failures, requests and metrics
"""

from __future__ import annotations  # Enable forward references for type hints

import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response as StarletteResponse

from .common.url_utils import build_request_target
from .errors import ConfigurationError, FailureKind, ServerError, describe_exception
from .matcher import IncomingRequest
from .mock import Expectation, Mock
from .response import Response, ResponseWriter

LOG_LEVELS = ('critical', 'error', 'warning', 'info', 'debug', 'trace')


@dataclass
class ServerConfig:
    """Configuration for a test server."""

    # Listener
    host: str = "127.0.0.1"
    port: int = 0  # 0 = pick a free port
    startup_timeout: float = 5.0  # seconds to wait for the listener

    # TLS; certificate generation is up to the caller
    tls: bool = False
    ssl_certfile: Optional[str] = None
    ssl_keyfile: Optional[str] = None

    # Responses for requests that matched nothing
    not_found_status: int = 404

    # Logging
    log_level: str = "warning"

    # Admin API
    admin_enabled: bool = False
    admin_prefix: str = "/__httpmock__"

    # Custom ASGI application served instead of the default dispatch
    app: Optional[Any] = None

    def validate(self):
        """
        Check the configuration.

        Raises:
            ConfigurationError: On any invalid setting
        """
        if self.tls and not (self.ssl_certfile and self.ssl_keyfile):
            raise ConfigurationError("TLS requires both ssl_certfile and ssl_keyfile")
        if self.log_level.lower() not in LOG_LEVELS:
            raise ConfigurationError(f"Unknown log level: {self.log_level}")
        if self.startup_timeout <= 0:
            raise ConfigurationError(f"startup_timeout must be positive, got {self.startup_timeout}")
        if not 100 <= self.not_found_status <= 599:
            raise ConfigurationError(f"not_found_status must be an HTTP status, got {self.not_found_status}")
        if not 0 <= self.port <= 65535:
            raise ConfigurationError(f"Invalid port: {self.port}")
        if not self.admin_prefix.startswith('/'):
            raise ConfigurationError(f"admin_prefix must start with '/', got {self.admin_prefix}")


class FaultPolicy(str, Enum):
    """What happens to an unexpected fault raised while dispatching a request."""

    RECOVERABLE = "recoverable"  # log it, record a failure, answer 404
    NOT_RECOVERABLE = "not_recoverable"  # let it propagate


@dataclass
class MockMetrics:
    """Request metrics, derived from the Mock's request log and failures."""

    total_requests: int = 0
    matched_requests: int = 0
    unmatched_requests: int = 0
    write_failures: int = 0
    faults: int = 0
    start_time: str = field(default_factory=lambda: datetime.now().isoformat())

    @classmethod
    def from_mock(cls, mock: Mock, start_time: Optional[str] = None) -> "MockMetrics":
        requests = mock.requests
        failures = mock.failures
        matched = sum(1 for r in requests if r.matched is not None)
        metrics = cls(
            total_requests=len(requests),
            matched_requests=matched,
            unmatched_requests=len(requests) - matched,
            write_failures=sum(1 for f in failures if f.kind == FailureKind.WRITE_FAILED),
            faults=sum(1 for f in failures if f.kind == FailureKind.UNEXPECTED_FAULT)
        )
        if start_time:
            metrics.start_time = start_time
        return metrics

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        uptime_seconds = (datetime.now() - datetime.fromisoformat(self.start_time)).total_seconds()
        return {
            'total_requests': self.total_requests,
            'matched_requests': self.matched_requests,
            'unmatched_requests': self.unmatched_requests,
            'write_failures': self.write_failures,
            'faults': self.faults,
            'match_rate': round((self.matched_requests / self.total_requests * 100) if self.total_requests > 0 else 0, 2),
            'uptime_seconds': round(uptime_seconds, 2),
            'start_time': self.start_time
        }


class DispatchResponse(StarletteResponse):
    """
    ASGI response that hands the matched Response to the ResponseWriter.

    Writing happens inside the same fault boundary as matching: a fault
    raised before the status line went out still yields a 404 when the
    server is recoverable.
    """

    def __init__(self, server: "Server", response: Response, request: IncomingRequest):
        super().__init__(status_code=response.status)
        self.server = server
        self.response = response
        self.request = request

    async def __call__(self, scope, receive, send):
        started = False

        async def tracking_send(message):
            nonlocal started
            await send(message)
            if message['type'] == 'http.response.start':
                started = True

        try:
            error = await self.server.writer.write(self.response, tracking_send, self.request.method, receive)
        except Exception as e:
            if not self.server.is_recoverable():
                raise
            self.server._record_fault(e, self.request)
            if not started:
                await send_empty(send, self.server.mock.not_found_status)
            return

        if error:
            self.server.mock.fail(
                "failed to write response for request:\n%s\nwith error: %s",
                self.request.describe(),
                error,
                kind=FailureKind.WRITE_FAILED
            )


async def send_empty(send, status: int):
    await send({'type': 'http.response.start', 'status': status, 'headers': [(b'content-length', b'0')]})
    await send({'type': 'http.response.body', 'body': b'', 'more_body': False})


class Server:
    """
    Test HTTP server backed by a Mock.

    Example:
        with Server() as server:
            server.on('GET', '/widgets').respond_ok('[]')

            response = httpx.get(f"{server.url}/widgets")
            assert response.text == '[]'

            server.mock.assert_no_failures()

        # TLS with caller-supplied certificates
        config = ServerConfig(tls=True, ssl_certfile='cert.pem', ssl_keyfile='key.pem')
        server = Server(config).start()
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        mock: Optional[Mock] = None,
        writer: Optional[ResponseWriter] = None
    ):
        """
        Initialize the server. Nothing is bound until start().

        Args:
            config: Optional ServerConfig
            mock: Optional Mock to serve (a new one is created if None)
            writer: Optional ResponseWriter
        """
        self.config = config or ServerConfig()
        self.config.validate()

        self.mock = mock or Mock(not_found_status=self.config.not_found_status)
        self.writer = writer or ResponseWriter()
        self._policy = FaultPolicy.RECOVERABLE
        self.start_time = datetime.now().isoformat()

        self.logger = logging.getLogger("httpmock.server")
        self.logger.setLevel(getattr(logging, self.config.log_level.upper(), logging.DEBUG))

        self.app = self._create_app()

        self._uvicorn: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._socket: Optional[socket.socket] = None
        self._address: Optional[tuple] = None

    # Fault policy

    def not_recoverable(self) -> "Server":
        """
        Let unexpected faults propagate out of the dispatch path.

        By default faults are logged, recorded as failures and answered with a
        404, since they almost always come from code assuming a match that
        was not found. There is no way back to the recoverable policy.
        """
        self._policy = FaultPolicy.NOT_RECOVERABLE
        return self

    @property
    def policy(self) -> FaultPolicy:
        """Current fault policy. Read-only; see not_recoverable()."""
        return self._policy

    def is_recoverable(self) -> bool:
        return self._policy == FaultPolicy.RECOVERABLE

    def on(self, method: str, url: Any, body: Any = None) -> Expectation:
        """Register an expectation on the server's Mock."""
        return self.mock.on(method, url, body)

    # Dispatch

    def _create_app(self) -> FastAPI:
        """Create FastAPI application with routes."""
        app = FastAPI(
            title="httpmock test server",
            docs_url=None,
            redoc_url=None,
            openapi_url=None
        )

        if self.config.admin_enabled:
            prefix = self.config.admin_prefix.rstrip('/')

            @app.get(f"{prefix}/expectations")
            async def list_expectations():
                """List registered expectations in registration order."""
                expectations = [e.to_dict() for e in self.mock.expectations]
                return JSONResponse(content={
                    'total': len(expectations),
                    'expectations': expectations
                })

            @app.get(f"{prefix}/failures")
            async def list_failures():
                """List recorded failures."""
                failures = [f.to_dict() for f in self.mock.failures]
                return JSONResponse(content={
                    'total': len(failures),
                    'failures': failures
                })

            @app.get(f"{prefix}/requests")
            async def list_requests():
                """List requests seen by the Mock."""
                requests = [r.to_dict() for r in self.mock.requests]
                return JSONResponse(content={
                    'total': len(requests),
                    'requests': requests
                })

            @app.get(f"{prefix}/metrics")
            async def get_metrics():
                """Get server metrics."""
                return JSONResponse(content=self.metrics.to_dict())

        # Main catch-all for mocking, mounted so every method reaches the Mock
        async def mock_request(scope, receive, send):
            """Handle incoming requests and serve mock responses."""
            if scope['type'] != 'http':
                if scope['type'] == 'websocket':
                    await send({'type': 'websocket.close', 'code': 1000})
                return
            response = await self._handle_request(Request(scope, receive))
            await response(scope, receive, send)

        app.mount("/", mock_request)

        return app

    @property
    def metrics(self) -> MockMetrics:
        return MockMetrics.from_mock(self.mock, start_time=self.start_time)

    async def _snapshot(self, request: Request) -> IncomingRequest:
        """Copy the parts of a request the Mock needs into an immutable snapshot."""
        raw_path = request.scope.get('raw_path')
        if raw_path:
            path = raw_path.split(b'?', 1)[0].decode('latin-1')
        else:
            path = request.scope.get('path', '/')
        query = request.scope.get('query_string', b'').decode('latin-1')

        return IncomingRequest(
            method=request.method,
            url=build_request_target(path, query),
            headers=tuple(
                (name.decode('latin-1'), value.decode('latin-1'))
                for name, value in request.scope.get('headers', [])
            ),
            body=await request.body()
        )

    async def _handle_request(self, request: Request) -> StarletteResponse:
        """
        Dispatch one request: snapshot, match, then hand off to the writer.

        Args:
            request: FastAPI Request object

        Returns:
            DispatchResponse for a match or a no-match 404, or a plain 404
            when a fault was recovered
        """
        incoming = None
        try:
            incoming = await self._snapshot(request)
            self.logger.debug(f"Incoming: {incoming.method} {incoming.url}")
            response = self.mock.requested(incoming)
        except Exception as e:
            if not self.is_recoverable():
                raise
            self._record_fault(e, incoming)
            return StarletteResponse(status_code=self.mock.not_found_status)

        return DispatchResponse(self, response, incoming)

    def _record_fault(self, exc: BaseException, request: Optional[IncomingRequest]):
        description = request.describe() if request else "<request not read>"
        print(describe_exception(exc))
        self.logger.error("Recovered from fault during dispatch", exc_info=exc)
        self.mock.fail(
            "unexpected fault while handling request:\n%s\n%s",
            description,
            describe_exception(exc),
            kind=FailureKind.UNEXPECTED_FAULT
        )

    # Listener lifecycle

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def url(self) -> str:
        """Base URL of the running server, e.g. http://127.0.0.1:54321"""
        if self._address is None:
            raise ServerError("Server is not started")
        host, port = self._address[0], self._address[1]
        scheme = "https" if self.config.tls else "http"
        if ':' in host:
            host = f"[{host}]"
        return f"{scheme}://{host}:{port}"

    @property
    def port(self) -> int:
        if self._address is None:
            raise ServerError("Server is not started")
        return self._address[1]

    def _bind(self) -> socket.socket:
        family = socket.AF_INET6 if ':' in self.config.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.config.host, self.config.port))
        except OSError as e:
            sock.close()
            raise ServerError(f"Could not bind {self.config.host}:{self.config.port}: {e}") from e
        return sock

    def start(self) -> "Server":
        """
        Bind the listener and serve on a background thread.

        Returns:
            The started server

        Raises:
            ServerError: If already started or the listener did not come up
        """
        if self._thread is not None:
            raise ServerError("Server is already started")

        self._socket = self._bind()
        self._address = self._socket.getsockname()

        uvicorn_config = uvicorn.Config(
            self.config.app or self.app,
            log_level=self.config.log_level.lower(),
            log_config=None,
            access_log=False,
            lifespan="off",
            server_header=False,
            date_header=False,
            ssl_certfile=self.config.ssl_certfile if self.config.tls else None,
            ssl_keyfile=self.config.ssl_keyfile if self.config.tls else None
        )
        self._uvicorn = uvicorn.Server(uvicorn_config)
        self._thread = threading.Thread(
            target=self._uvicorn.run,
            kwargs={'sockets': [self._socket]},
            name=f"httpmock-{self._address[1]}",
            daemon=True
        )
        self._thread.start()

        deadline = time.monotonic() + self.config.startup_timeout
        while not self._uvicorn.started:
            if not self._thread.is_alive():
                self._cleanup()
                raise ServerError("Server thread exited during startup")
            if time.monotonic() > deadline:
                self.close()
                raise ServerError(f"Server did not start within {self.config.startup_timeout}s")
            time.sleep(0.01)

        self.logger.info(f"Serving on {self.url}")
        return self

    def close(self, timeout: float = 5.0):
        """Stop serving and release the listener. Safe to call twice."""
        if self._uvicorn is not None:
            self._uvicorn.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive() and self._uvicorn is not None:
                self._uvicorn.force_exit = True
                self._thread.join(timeout)
        self._cleanup()

    def _cleanup(self):
        if self._socket is not None:
            self._socket.close()
        self._socket = None
        self._thread = None
        self._uvicorn = None

    def __enter__(self) -> "Server":
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.close()


def create_server(
    tls: bool = False,
    ssl_certfile: Optional[str] = None,
    ssl_keyfile: Optional[str] = None,
    host: str = "127.0.0.1",
    port: int = 0,
    admin_enabled: bool = False,
    log_level: str = "warning",
    start: bool = True
) -> Server:
    """
    Convenience function to create, and by default start, a test server.

    Args:
        tls: Serve HTTPS using the given certificate and key
        ssl_certfile: PEM certificate path (TLS only)
        ssl_keyfile: PEM private key path (TLS only)
        host: Host to bind to
        port: Port to bind to (0 = any free port)
        admin_enabled: Expose the admin API
        log_level: Log level for httpmock and uvicorn loggers
        start: Start the listener before returning

    Returns:
        Configured Server instance

    Example:
        server = create_server()
        server.on('GET', '/health').respond_ok('ok')
        ...
        server.close()
    """
    config = ServerConfig(
        tls=tls,
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
        host=host,
        port=port,
        admin_enabled=admin_enabled,
        log_level=log_level
    )
    server = Server(config)
    if start:
        server.start()
    return server
