from typing import Dict, Optional

from otakuproxy.config.settings import settings
from otakuproxy.converters.base import BaseConverter, ConversionResult
from otakuproxy.converters.browser import BrowserAutomationConverter
from otakuproxy.converters.direct import DirectSignatureConverter
from otakuproxy.utils.errors import AutomationError, UpstreamError
from otakuproxy.utils.logger import convert_logger
from otakuproxy.utils.validators import validate_resource_url

# ===========================
# Strategy Registry
# ===========================
STRATEGIES = {
    "direct": DirectSignatureConverter,
    "browser": BrowserAutomationConverter,
}

FALLBACK_ERRORS = (UpstreamError, AutomationError)


# ===========================
# Convert Service Class
# ===========================
class ConvertService:

    def __init__(self, converters: Optional[Dict[str, BaseConverter]] = None):
        self._converters: Dict[str, BaseConverter] = dict(converters or {})

    def get_converter(self, name: str) -> BaseConverter:
        if name not in self._converters:
            self._converters[name] = STRATEGIES[name]()
        return self._converters[name]

    @staticmethod
    def fallback_for(name: str) -> str:
        return "browser" if name == "direct" else "direct"

    async def convert(self, url: Optional[str]) -> ConversionResult:
        resource_url = validate_resource_url(url, settings.CONVERT_ALLOWED_HOSTS)
        primary = settings.CONVERT_STRATEGY

        convert_logger.debug(f"Converting with {primary}: {resource_url}")
        try:
            return await self.get_converter(primary).convert(resource_url)
        except FALLBACK_ERRORS as e:
            if isinstance(e, UpstreamError) and e.is_rejection:
                convert_logger.error(f"ALERT: provider rejected {primary} request (HTTP {e.upstream_status})")
            if not settings.CONVERT_FALLBACK:
                raise

            fallback = self.fallback_for(primary)
            convert_logger.info(f"{primary} failed with {e.kind}, falling back to {fallback}")
            return await self.get_converter(fallback).convert(resource_url)

    def browser_status(self) -> Dict:
        converter = self._converters.get("browser")
        if converter is None:
            return {"running": False, "active_pages": 0}
        return {"running": converter.pool.is_running, "active_pages": converter.pool.active_pages}

    async def close(self):
        for converter in self._converters.values():
            await converter.close()
        self._converters.clear()


# ===========================
# Global Convert Service Instance
# ===========================
convert_service = ConvertService()
