"""
httpmock Common Utilities

Shared helpers used across httpmock modules.
"""

from .url_utils import (
    PathPattern,
    path_pattern,
    build_request_target,
    split_request_target,
    parse_query
)
from .utils import safe_body, format_headers

__all__ = [
    'PathPattern',
    'path_pattern',
    'build_request_target',
    'split_request_target',
    'parse_query',
    'safe_body',
    'format_headers'
]
