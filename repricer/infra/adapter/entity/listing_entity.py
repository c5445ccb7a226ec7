from datetime import datetime
from typing import Dict, Optional
from pydantic import Field, model_validator

from repricer.infra.adapter.entity.base_entity import MongoEntity, PyObjectId


class Listing(MongoEntity):
    """
    A seller's listing together with its repricing attachments.

    The bounds are per listing: the same strategy is shared by items of very
    different value. ``version`` is bumped on every write so that concurrent
    writers can detect each other.
    """

    item_id: str
    sku: Optional[str] = None
    user_id: str
    title: Optional[str] = None
    offer_id: Optional[str] = None
    strategy_id: Optional[PyObjectId] = None
    competitor_rule_id: Optional[PyObjectId] = None
    min_price: Optional[float] = Field(default=None, ge=0)
    max_price: Optional[float] = Field(default=None, ge=0)
    mpn: Optional[str] = None
    upc: Optional[str] = None
    ean: Optional[str] = None
    isbn: Optional[str] = None
    monitoring_enabled: bool = True
    last_known_price: Optional[float] = None
    last_monitoring_check: Optional[datetime] = None
    last_repriced_at: Optional[datetime] = None
    version: int = 0

    @model_validator(mode="after")
    def check_bounds(self) -> "Listing":
        if self.min_price is not None and self.max_price is not None and self.min_price > self.max_price:
            raise ValueError("Minimum price cannot be greater than maximum price")
        return self

    @property
    def identifiers(self) -> Dict[str, str]:
        return {
            key: value
            for key, value in (("mpn", self.mpn), ("upc", self.upc), ("ean", self.ean), ("isbn", self.isbn))
            if value
        }
