from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import Field, field_validator, model_validator

from repricer.infra.adapter.entity.base_entity import MongoEntity, utc_now


class RepricingRule(str, Enum):
    MATCH_LOWEST = "MATCH_LOWEST"
    BEAT_LOWEST = "BEAT_LOWEST"
    STAY_ABOVE = "STAY_ABOVE"


class AdjustmentType(str, Enum):
    AMOUNT = "AMOUNT"
    PERCENTAGE = "PERCENTAGE"


class NoCompetitionAction(str, Enum):
    USE_MAX_PRICE = "USE_MAX_PRICE"
    USE_MIN_PRICE = "USE_MIN_PRICE"
    KEEP_CURRENT = "KEEP_CURRENT"


class PricingStrategy(MongoEntity):
    strategy_name: str = Field(..., min_length=1, max_length=100)
    repricing_rule: RepricingRule
    adjustment_type: Optional[AdjustmentType] = None
    # PERCENTAGE values are fractions: 0.10 is 10%
    adjustment_value: Optional[float] = Field(default=None, ge=0)
    no_competition_action: NoCompetitionAction = NoCompetitionAction.USE_MAX_PRICE
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: bool = True
    owner_id: Optional[str] = None
    usage_count: int = 0
    last_used: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("strategy_name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Strategy name is required")
        return value

    @model_validator(mode="after")
    def check_adjustment(self) -> "PricingStrategy":
        if self.repricing_rule == RepricingRule.MATCH_LOWEST:
            return self

        if self.adjustment_type is None or self.adjustment_value is None:
            raise ValueError(
                f"{self.repricing_rule} strategy requires adjustment_type and adjustment_value"
            )
        return self

    @property
    def formatted_value(self) -> str:
        if self.adjustment_value is None:
            return ""
        if self.adjustment_type == AdjustmentType.PERCENTAGE:
            return f"{self.adjustment_value * 100:.2f}%"
        return f"${self.adjustment_value:.2f}"
