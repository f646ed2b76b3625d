"""
httpmock Mock

Ordered registry of request/response expectations.

Expectations are matched in registration order: the first one that accepts a
request and still has matches left wins. Register more specific expectations
before broader ones when their criteria overlap.

Example:
    mock = Mock()
    mock.on('GET', '/widgets').respond_ok(b'[]')
    mock.on('POST', '/widgets', b'{"name": "a"}').respond(201).times(2)

    response = mock.requested(IncomingRequest('GET', '/widgets'))
    assert response.status == 200
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional, Union

from . import matcher
from .common.url_utils import PathPattern
from .errors import ExpectationError, Failure, FailureKind
from .matcher import IncomingRequest, ValueMatcher
from .response import Body, Response, to_bytes

logger = logging.getLogger("httpmock.mock")


class Expectation:
    """
    A registered expectation and its builder handle.

    Created only through Mock.on. Every mutation goes through the owning
    Mock's lock, and the match counter is only ever advanced by
    Mock.requested, so the Mock stays the single source of truth for
    match counting.

    Builder methods return the expectation itself so calls chain:

        mock.on('GET', '/users/1') \\
            .with_header('Authorization', 'Bearer abc') \\
            .respond_json({'id': 1}) \\
            .twice()
    """

    def __init__(self, mock: "Mock", index: int, method: str, url: Any, body: Any = None):
        self._mock = mock
        self.index = index
        self.method = method
        self.url = url
        self.body = self._normalize_body(body)
        self.header_matchers: List[ValueMatcher] = []
        self.query_matchers: List[ValueMatcher] = []
        self.response = Response()
        self.times_expected: Optional[int] = 1
        self._times_matched = 0

    @staticmethod
    def _normalize_body(body: Any):
        if body is None or callable(body):
            return body
        return to_bytes(body)

    @property
    def times_matched(self) -> int:
        return self._times_matched

    @property
    def is_exhausted(self) -> bool:
        if self.times_expected is None:
            return False
        return self._times_matched >= self.times_expected

    @property
    def is_satisfied(self) -> bool:
        """True when a finite expectation was matched exactly as often as expected."""
        if self.times_expected is None:
            return True
        return self._times_matched == self.times_expected

    # Request criteria

    def with_header(self, name: str, value: Union[str, Callable[[List[str]], bool]]) -> "Expectation":
        """Require a request header. A predicate receives all values of the header."""
        with self._mock._lock:
            self.header_matchers.append(ValueMatcher(name, value))
        return self

    def with_query(self, name: str, value: Union[str, Callable[[List[str]], bool]]) -> "Expectation":
        """Require a query parameter, independent of parameter order."""
        with self._mock._lock:
            self.query_matchers.append(ValueMatcher(name, value))
        return self

    def with_body(self, body: Union[str, bytes, Callable[[bytes], bool]]) -> "Expectation":
        with self._mock._lock:
            self.body = self._normalize_body(body)
        return self

    # Response configuration

    def respond(
        self,
        status: int = 200,
        body: Union[str, Body] = b"",
        headers: Optional[dict] = None
    ) -> "Expectation":
        """
        Set the response.

        Args:
            status: HTTP status code
            body: bytes/str, or a zero-argument callable producing chunks
            headers: Mapping of name to a value or list of values
        """
        with self._mock._lock:
            self.response.status = status
            self.response.body = body if callable(body) else to_bytes(body)
            for name, values in (headers or {}).items():
                if isinstance(values, str):
                    values = [values]
                self.response.set_header(name, *values)
        return self

    def respond_ok(self, body: Union[str, bytes] = b"") -> "Expectation":
        return self.respond(200, body)

    def respond_json(self, payload: Any, status: int = 200) -> "Expectation":
        """Respond with a JSON-encoded body and Content-Type: application/json."""
        with self._mock._lock:
            json_response = Response.json(payload, status=status)
            self.response.status = json_response.status
            self.response.body = json_response.body
            self.response.set_header('Content-Type', 'application/json')
        return self

    def respond_with(self, producer: Callable[[], Any], status: int = 200) -> "Expectation":
        """Stream the body from a producer called once per response."""
        if not callable(producer):
            raise ExpectationError("respond_with() requires a callable producer")
        return self.respond(status, producer)

    def with_response_header(self, name: str, *values: str) -> "Expectation":
        """Append response header values, keeping declaration order."""
        with self._mock._lock:
            self.response.add_header(name, *values)
        return self

    def after(self, seconds: float) -> "Expectation":
        """Delay the response to simulate latency."""
        if seconds < 0:
            raise ExpectationError(f"Delay must not be negative, got {seconds}")
        with self._mock._lock:
            self.response.delay = seconds
        return self

    # Repeat count

    def times(self, n: int) -> "Expectation":
        if n < 1:
            raise ExpectationError(f"times() requires n >= 1, got {n}; use repeatedly() for unbounded")
        with self._mock._lock:
            self.times_expected = n
        return self

    def once(self) -> "Expectation":
        return self.times(1)

    def twice(self) -> "Expectation":
        return self.times(2)

    def repeatedly(self) -> "Expectation":
        """Match any number of requests."""
        with self._mock._lock:
            self.times_expected = None
        return self

    def _describe_url(self) -> str:
        if isinstance(self.url, str):
            return self.url
        if isinstance(self.url, PathPattern):
            return f"pattern {self.url}"
        pattern = getattr(self.url, 'pattern', None)
        if pattern is not None:
            return f"regex {pattern}"
        return f"<predicate {getattr(self.url, '__name__', 'callable')}>"

    def __str__(self) -> str:
        method = self.method if self.method not in matcher.WILDCARD_METHODS else '*'
        expected = "unbounded" if self.times_expected is None else str(self.times_expected)
        lines = [f"{method} {self._describe_url()} (matched {self._times_matched}/{expected})"]
        for header in self.header_matchers:
            lines.append(f"  header {header}")
        for param in self.query_matchers:
            lines.append(f"  query {param}")
        if callable(self.body):
            lines.append(f"  body <predicate {getattr(self.body, '__name__', 'callable')}>")
        elif self.body is not None:
            lines.append(f"  body {len(self.body)} bytes")
        lines.append(f"  -> {self.response.describe()}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"<Expectation #{self.index} {self.method} {self._describe_url()}>"

    def to_dict(self):
        return {
            'index': self.index,
            'method': self.method,
            'url': self._describe_url(),
            'headers': [str(h) for h in self.header_matchers],
            'query': [str(q) for q in self.query_matchers],
            'times_expected': self.times_expected,
            'times_matched': self._times_matched,
            'response_status': self.response.status
        }


@dataclass
class RecordedRequest:
    """A request seen by the Mock, kept for later inspection."""

    request: IncomingRequest
    matched: Optional[Expectation] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self):
        return {
            'method': self.request.method,
            'url': self.request.url,
            'headers': [list(pair) for pair in self.request.headers],
            'matched': self.matched is not None,
            'matched_index': self.matched.index if self.matched else None,
            'timestamp': self.timestamp
        }


class Mock:
    """
    Ordered collection of expectations plus recorded failures.

    Safe to use from many threads at once: registration and the
    scan-and-consume step of requested() share one lock.
    """

    def __init__(self, not_found_status: int = 404):
        self.not_found_status = not_found_status
        self._lock = threading.RLock()
        self._expectations: List[Expectation] = []
        self._failures: List[Failure] = []
        self._requests: List[RecordedRequest] = []

    def on(self, method: str, url: Any, body: Any = None) -> Expectation:
        """
        Register a new expectation.

        Args:
            method: HTTP method, '' or '*' for any
            url: Exact request target, compiled regex, PathPattern or predicate
            body: Exact body (bytes/str), predicate over bytes, or None for any

        Returns:
            The new Expectation, responding 200 with an empty body once
        """
        with self._lock:
            expectation = Expectation(self, len(self._expectations), method, url, body)
            self._expectations.append(expectation)
        logger.debug(f"Registered expectation #{expectation.index}: {method} {expectation._describe_url()}")
        return expectation

    def requested(self, request: IncomingRequest) -> Response:
        """
        Find and consume the first eligible expectation for a request.

        Args:
            request: Incoming request snapshot

        Returns:
            Copy of the matched expectation's response, or an empty 404
            response when nothing eligible matched (a failure is recorded)
        """
        with self._lock:
            for expectation in self._expectations:
                if expectation.is_exhausted:
                    continue
                if matcher.matches(expectation, request):
                    expectation._times_matched += 1
                    response = expectation.response.copy()
                    self._requests.append(RecordedRequest(request, expectation))
                    logger.debug(f"Matched {request.method} {request.url} to expectation #{expectation.index}")
                    return response

            self._requests.append(RecordedRequest(request))
            registered = self._describe_expectations()

        self.fail(
            "no matching expectation found for request:\n%s\nRegistered expectations:\n%s",
            request.describe(),
            registered,
            kind=FailureKind.NO_MATCH
        )
        return Response.not_found(self.not_found_status)

    def fail(self, message: str, *args, kind: FailureKind = FailureKind.GENERIC) -> Failure:
        """
        Record a failure. `%`-style args are applied to the message.

        Never raises; failures are inspected after the fact through
        failures, assert_no_failures() or the pytest fixture.
        """
        text = message % args if args else message
        failure = Failure(message=text, kind=kind)
        with self._lock:
            self._failures.append(failure)
        logger.error(text)
        return failure

    def _describe_expectations(self) -> str:
        if not self._expectations:
            return "  (none)"
        return "\n".join(
            f"  #{e.index} " + str(e).replace("\n", "\n  ")
            for e in self._expectations
        )

    @property
    def expectations(self) -> List[Expectation]:
        with self._lock:
            return list(self._expectations)

    @property
    def failures(self) -> List[Failure]:
        with self._lock:
            return list(self._failures)

    @property
    def requests(self) -> List[RecordedRequest]:
        with self._lock:
            return list(self._requests)

    def failure_messages(self) -> List[str]:
        return [f.message for f in self.failures]

    def clear_failures(self) -> List[Failure]:
        """Remove and return all recorded failures."""
        with self._lock:
            failures, self._failures = self._failures, []
        return failures

    def assert_no_failures(self):
        failures = self.failures
        if failures:
            details = "\n\n".join(f"[{f.kind.value}] {f.message}" for f in failures)
            raise AssertionError(f"{len(failures)} failure(s) recorded:\n\n{details}")

    def assert_expectations(self):
        """Assert every finite expectation was matched exactly as often as expected."""
        with self._lock:
            unmet = [e for e in self._expectations if not e.is_satisfied]
            if unmet:
                details = "\n".join(str(e) for e in unmet)
        if unmet:
            raise AssertionError(f"{len(unmet)} expectation(s) not met:\n{details}")
