"""
httpmock Request Matcher

Decides whether an incoming request satisfies a registered expectation.

Matching rules (all must hold):
- Method: case-sensitive exact match, '' or '*' matches any method
- URL: exact match on the request target (path + query), or a regex,
  wildcard path pattern or predicate declared by the expectation
- Query: every declared parameter must be present with the expected value
- Headers: every declared header must be present with a satisfying value;
  headers the expectation does not mention are ignored
- Body: byte-exact equality or a predicate; no body matcher matches any body

Matching is a pure predicate. Exceptions raised by user-supplied predicates
are not caught here.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, List, Tuple, Union

from .common.url_utils import PathPattern, parse_query, split_request_target
from .common.utils import format_headers, safe_body

WILDCARD_METHODS = ('', '*')

ValuePredicate = Callable[[List[str]], bool]
BodyPredicate = Callable[[bytes], bool]
URLPredicate = Callable[[str], bool]
URLMatcher = Union[str, re.Pattern, PathPattern, URLPredicate]
BodyMatcher = Union[None, bytes, BodyPredicate]


@dataclass(frozen=True)
class IncomingRequest:
    """
    Read-only snapshot of an inbound request.

    Attributes:
        method: Request method as sent by the client
        url: Request target, path plus query ('/users?id=1')
        headers: (name, value) pairs in arrival order
        body: Raw body bytes
    """

    method: str
    url: str
    headers: Tuple[Tuple[str, str], ...] = ()
    body: bytes = b""

    @property
    def path(self) -> str:
        return split_request_target(self.url)[0]

    @property
    def query(self) -> str:
        return split_request_target(self.url)[1]

    def header_values(self, name: str) -> List[str]:
        """All values of a header; names compare case-insensitively."""
        wanted = name.lower()
        return [value for key, value in self.headers if key.lower() == wanted]

    def describe(self) -> str:
        lines = [f"{self.method} {self.url}", "Headers:", format_headers(self.headers)]
        if self.body:
            lines.extend(["Body:", f"  {safe_body(self.body)}"])
        return "\n".join(lines)


@dataclass(frozen=True)
class ValueMatcher:
    """
    Expected value for a named header or query parameter.

    `expected` is either a literal (must be one of the request's values) or a
    predicate receiving the full list of values.
    """

    name: str
    expected: Union[str, ValuePredicate]

    def matches(self, values: List[str]) -> bool:
        if callable(self.expected):
            return bool(self.expected(values))
        return self.expected in values

    def __str__(self) -> str:
        if callable(self.expected):
            return f"{self.name}: <predicate {getattr(self.expected, '__name__', 'callable')}>"
        return f"{self.name}: {self.expected}"


def method_matches(expected: str, actual: str) -> bool:
    if expected in WILDCARD_METHODS:
        return True
    return expected == actual


def url_matches(expected: Any, target: str) -> bool:
    """
    Match the request target against the expectation's URL matcher.

    Args:
        expected: str (exact), compiled regex (fullmatch), PathPattern or predicate
        target: Request target, path plus query

    Returns:
        True if the target is accepted
    """
    if isinstance(expected, str):
        return expected == target
    if isinstance(expected, re.Pattern):
        return expected.fullmatch(target) is not None
    if isinstance(expected, PathPattern):
        return expected.matches(target)
    if callable(expected):
        return bool(expected(target))
    raise TypeError(f"Unsupported URL matcher: {expected!r}")


def body_matches(expected: BodyMatcher, body: bytes) -> bool:
    if expected is None:
        return True
    if callable(expected):
        return bool(expected(body))
    return expected == body


def headers_match(expected: List[ValueMatcher], request: IncomingRequest) -> bool:
    for matcher in expected:
        values = request.header_values(matcher.name)
        if not values or not matcher.matches(values):
            return False
    return True


def query_matches(expected: List[ValueMatcher], request: IncomingRequest) -> bool:
    if not expected:
        return True
    params = parse_query(request.url)
    for matcher in expected:
        values = params.get(matcher.name)
        if not values or not matcher.matches(values):
            return False
    return True


def matches(expectation: Any, request: IncomingRequest) -> bool:
    """
    Check whether an expectation accepts a request.

    Cheap checks run first: method, then URL, query, headers and body.
    Exhaustion is not considered here; that is the registry's concern.

    Args:
        expectation: Object exposing method, url, query, headers and body matchers
        request: Incoming request snapshot

    Returns:
        True if every declared criterion is satisfied
    """
    return (
        method_matches(expectation.method, request.method)
        and url_matches(expectation.url, request.url)
        and query_matches(expectation.query_matchers, request)
        and headers_match(expectation.header_matchers, request)
        and body_matches(expectation.body, request.body)
    )
