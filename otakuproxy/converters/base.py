from abc import ABC, abstractmethod
from typing import Any

# ===========================
# Type Aliases
# ===========================
ConversionResult = Any

# ===========================
# Base Converter Class
# ===========================
class BaseConverter(ABC):

    @abstractmethod
    async def convert(self, resource_url: str) -> ConversionResult:
        pass

    @abstractmethod
    def get_strategy_name(self) -> str:
        pass

    async def close(self):
        pass
