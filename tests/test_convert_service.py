import pytest

from otakuproxy.config.settings import settings
from otakuproxy.converters.base import BaseConverter
from otakuproxy.services.convert import ConvertService
from otakuproxy.utils.errors import AutomationError, NetworkError, UpstreamError, ValidationError

REEL_URL = "https://www.instagram.com/reel/ABC123/"


class StubConverter(BaseConverter):
    def __init__(self, name, result=None, error=None):
        self.name = name
        self.result = result
        self.error = error
        self.calls = []
        self.closed = False

    def get_strategy_name(self) -> str:
        return self.name

    async def convert(self, resource_url):
        self.calls.append(resource_url)
        if self.error:
            raise self.error
        return self.result

    async def close(self):
        self.closed = True


def make_service(direct_error=None, browser_error=None):
    direct = StubConverter("direct", {"from": "direct"}, direct_error)
    browser = StubConverter("browser", {"from": "browser"}, browser_error)
    return ConvertService({"direct": direct, "browser": browser}), direct, browser


@pytest.fixture
def strategy(monkeypatch):
    def configure(primary="direct", fallback=False):
        monkeypatch.setattr(settings, "CONVERT_STRATEGY", primary)
        monkeypatch.setattr(settings, "CONVERT_FALLBACK", fallback)
    return configure


async def test_uses_configured_strategy(strategy):
    strategy("browser")
    service, direct, browser = make_service()

    assert await service.convert(REEL_URL) == {"from": "browser"}
    assert direct.calls == []
    assert browser.calls == [REEL_URL]


async def test_invalid_url_never_reaches_converters(strategy):
    strategy("direct", fallback=True)
    service, direct, browser = make_service()

    with pytest.raises(ValidationError):
        await service.convert("https://example.com/reel/x")
    with pytest.raises(ValidationError):
        await service.convert(None)
    assert direct.calls == [] and browser.calls == []


async def test_rejection_without_fallback_propagates(strategy):
    strategy("direct", fallback=False)
    service, _, browser = make_service(direct_error=UpstreamError("rejected", 403))

    with pytest.raises(UpstreamError):
        await service.convert(REEL_URL)
    assert browser.calls == []


async def test_rejection_falls_back_to_browser(strategy):
    strategy("direct", fallback=True)
    service, direct, browser = make_service(direct_error=UpstreamError("rejected", 403))

    assert await service.convert(REEL_URL) == {"from": "browser"}
    assert direct.calls == [REEL_URL]
    assert browser.calls == [REEL_URL]


async def test_automation_error_falls_back_to_direct(strategy):
    strategy("browser", fallback=True)
    service, direct, _ = make_service(browser_error=AutomationError("selector gone"))

    assert await service.convert(REEL_URL) == {"from": "direct"}
    assert direct.calls == [REEL_URL]


async def test_network_error_is_not_retried(strategy):
    strategy("direct", fallback=True)
    service, _, browser = make_service(direct_error=NetworkError("down"))

    with pytest.raises(NetworkError):
        await service.convert(REEL_URL)
    assert browser.calls == []


async def test_fallback_failure_surfaces(strategy):
    strategy("direct", fallback=True)
    service, _, _ = make_service(direct_error=UpstreamError("rejected", 403),
                                 browser_error=AutomationError("selector gone"))

    with pytest.raises(AutomationError):
        await service.convert(REEL_URL)


async def test_close_closes_converters():
    service, direct, browser = make_service()
    await service.close()
    assert direct.closed and browser.closed
