from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from pydantic import BaseModel

from repricer.infra.adapter.entity.competitor_entity import CompetitorSnapshot


class PriceUpdateResult(BaseModel):
    success: bool
    raw: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    status_code: Optional[int] = None


class MarketplaceGateway(ABC):
    """The three marketplace operations the repricing core depends on."""

    @abstractmethod
    async def get_manual_competitors(self, item_id: str, user_id: Optional[str] = None) -> List[CompetitorSnapshot]:
        pass

    @abstractmethod
    async def get_current_price(self, item_id: str, sku: Optional[str] = None, user_id: Optional[str] = None) -> float:
        pass

    @abstractmethod
    async def update_price(
        self,
        item_id: str,
        new_price: float,
        sku: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> PriceUpdateResult:
        pass
