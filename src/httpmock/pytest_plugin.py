"""
httpmock pytest plugin

Fixtures that give each test its own started Server and report recorded
failures when the test finishes.

Enable it from a conftest.py:

    pytest_plugins = ["httpmock.pytest_plugin"]

Then:

    def test_lists_widgets(httpmock_server):
        httpmock_server.on('GET', '/widgets').respond_ok('[]')
        assert fetch_widgets(httpmock_server.url) == []

Failures still recorded at teardown fail the test. Tests that provoke
failures on purpose should inspect and clear them with
`httpmock_server.mock.clear_failures()`.
"""

import pytest

from .mock import Mock
from .server import Server, ServerConfig


def _report_failures(mock: Mock):
    failures = mock.clear_failures()
    if failures:
        details = "\n\n".join(f"[{f.kind.value}] {f.message}" for f in failures)
        pytest.fail(f"httpmock recorded {len(failures)} failure(s):\n\n{details}", pytrace=False)


@pytest.fixture
def httpmock_config() -> ServerConfig:
    """Server configuration; override this fixture to customize."""
    return ServerConfig()


@pytest.fixture
def httpmock_server(httpmock_config):
    """A started Server, closed at teardown."""
    server = Server(httpmock_config).start()
    try:
        yield server
    finally:
        server.close()
    _report_failures(server.mock)


@pytest.fixture
def httpmock_mock():
    """A bare Mock for tests that drive Mock.requested directly."""
    mock = Mock()
    yield mock
    _report_failures(mock)
