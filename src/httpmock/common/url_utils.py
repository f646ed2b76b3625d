"""
httpmock URL Utilities

Request-target helpers and wildcard path patterns used by the matcher.
"""

import re
from typing import Optional, Tuple
from urllib.parse import urlparse, parse_qs


def build_request_target(path: str, query: Optional[str] = None) -> str:
    """
    Build the request target (path + query) as seen on the request line.

    Args:
        path: Raw request path
        query: Raw query string without the leading '?'

    Returns:
        Target string such as '/users?id=1'
    """
    path = path or '/'
    if query:
        return f"{path}?{query}"
    return path


def split_request_target(target: str) -> Tuple[str, str]:
    """Split a request target into (path, query)."""
    path, _, query = target.partition('?')
    return path or '/', query


class PathPattern:
    """
    Wildcard pattern over the request path.

    Supports patterns like:
    - /users/* (any single segment)
    - /users/** (any number of segments)
    - /users/{id} (named parameter, single segment)

    The query string of the request target is ignored.

    Example:
        pattern = PathPattern('/users/{id}/orders/*')
        pattern.matches('/users/42/orders/7?expand=1')  # True
    """

    def __init__(self, pattern: str):
        self.pattern = pattern
        self.regex = re.compile(self._to_regex(pattern))

    @staticmethod
    def _to_regex(pattern: str) -> str:
        parts = []
        i = 0
        while i < len(pattern):
            if pattern.startswith('**', i):
                parts.append('.*')
                i += 2
            elif pattern[i] == '*':
                parts.append('[^/]+')
                i += 1
            elif pattern[i] == '{':
                end = pattern.find('}', i)
                if end == -1:
                    parts.append(re.escape(pattern[i:]))
                    break
                parts.append('[^/]+')
                i = end + 1
            else:
                parts.append(re.escape(pattern[i]))
                i += 1
        return '^' + ''.join(parts) + '$'

    def matches(self, target: str) -> bool:
        path, _ = split_request_target(target)
        return bool(self.regex.match(path))

    def __repr__(self) -> str:
        return f"PathPattern({self.pattern!r})"

    def __str__(self) -> str:
        return self.pattern


def path_pattern(pattern: str) -> PathPattern:
    """Convenience constructor for PathPattern."""
    return PathPattern(pattern)


def parse_query(target: str) -> dict:
    """Parse the query part of a request target into a dict of value lists."""
    return parse_qs(urlparse(target).query, keep_blank_values=True)
