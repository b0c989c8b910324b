from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: int = 10

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        pass


class PriceProvider(Provider):
    """Provider for display-only price data"""

    @abstractmethod
    async def get_sol_price_usd(self) -> Optional[float]:
        """Current SOL/USD price, or None when unavailable"""
        pass
