import httpx
import pytest

from otakuproxy.utils.cache import memory_cache
from otakuproxy.utils.http_client import http_client


@pytest.fixture(autouse=True)
def clean_state():
    memory_cache.clear()
    yield
    memory_cache.clear()
    http_client._client = None


@pytest.fixture
def mock_http():
    """Route every outgoing request through ``handler`` and record it."""
    calls = []

    def install(handler):
        def recording(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return handler(request)

        http_client.use_transport(httpx.MockTransport(recording))
        return calls

    return install
