from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from repricer.infra.adapter.entity.base_entity import MongoEntity, utc_now
from repricer.infra.config.config import VALID_CONDITIONS


class CompetitorRule(MongoEntity):
    rule_name: str = Field(default="Default rule", max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    min_percent_of_current_price: float = Field(default=0, ge=0, le=1000)
    max_percent_of_current_price: float = Field(default=1000, ge=0, le=1000)
    exclude_countries: List[str] = Field(default_factory=list)
    exclude_conditions: List[str] = Field(default_factory=list)
    exclude_product_title_words: List[str] = Field(default_factory=list)
    exclude_sellers: List[str] = Field(default_factory=list)
    find_competitors_based_on_mpn: bool = False
    max_shipping_cost: Optional[float] = Field(default=None, ge=0)
    is_active: bool = True
    owner_id: Optional[str] = None

    # usage counters
    usage_count: int = 0
    total_competitors_found: int = 0
    competitors_excluded: int = 0
    last_execution: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("exclude_conditions")
    @classmethod
    def check_conditions(cls, conditions: List[str]) -> List[str]:
        invalid = [c for c in conditions if c not in VALID_CONDITIONS]
        if invalid:
            raise ValueError(f"{invalid} contains invalid item conditions")
        return conditions

    @model_validator(mode="after")
    def check_percent_bounds(self) -> "CompetitorRule":
        if self.min_percent_of_current_price > self.max_percent_of_current_price:
            raise ValueError("Minimum percentage cannot be greater than maximum percentage")
        return self


class CompetitorSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    competitor_item_id: str
    price: float = Field(..., ge=0)
    shipping_cost: float = Field(default=0.0, ge=0)
    currency: str = "USD"
    seller_name: Optional[str] = None
    condition: Optional[str] = None
    country: Optional[str] = None
    title: str = ""
    product_url: Optional[str] = None
    image_url: Optional[str] = None
    mpn: Optional[str] = None
    upc: Optional[str] = None
    ean: Optional[str] = None
    isbn: Optional[str] = None
    added_at: datetime = Field(default_factory=utc_now)


class ManualCompetitorList(MongoEntity):
    user_id: str
    item_id: str
    competitors: List[CompetitorSnapshot] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
