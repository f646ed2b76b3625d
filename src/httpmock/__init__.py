"""
httpmock

Simulated HTTP servers for tests.

Register expected requests and their responses on a Mock, point the code
under test at a Server, and inspect recorded failures afterwards.

This package provides:
- Request matching engine (method, URL, query, headers, body)
- Ordered expectation registry with repeat counts
- Response writer with delays and streamed bodies
- FastAPI/uvicorn test server with a recoverable fault policy
"""

from .common import PathPattern, path_pattern
from .errors import (
    HttpMockError,
    ConfigurationError,
    ExpectationError,
    ServerError,
    ClientDisconnected,
    Failure,
    FailureKind,
    WriteFailed
)
from .matcher import IncomingRequest, ValueMatcher, matches
from .mock import Mock, Expectation, RecordedRequest
from .response import Response, ResponseWriter
from .server import (
    Server,
    ServerConfig,
    FaultPolicy,
    MockMetrics,
    create_server
)

__all__ = [
    # Server
    'Server',
    'ServerConfig',
    'FaultPolicy',
    'MockMetrics',
    'create_server',

    # Registry
    'Mock',
    'Expectation',
    'RecordedRequest',

    # Matcher
    'IncomingRequest',
    'ValueMatcher',
    'matches',
    'PathPattern',
    'path_pattern',

    # Response
    'Response',
    'ResponseWriter',

    # Errors
    'HttpMockError',
    'ConfigurationError',
    'ExpectationError',
    'ServerError',
    'ClientDisconnected',
    'Failure',
    'FailureKind',
    'WriteFailed',
]

__version__ = '1.0.0'
