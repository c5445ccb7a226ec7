from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from repricer.infra.adapter.entity.base_entity import MongoEntity, utc_now


class MarketplaceToken(BaseModel):
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    def is_valid(self, skew_seconds: int = 60) -> bool:
        if not self.access_token or self.expires_at is None:
            return False
        return (self.expires_at - utc_now()).total_seconds() > skew_seconds


class User(MongoEntity):
    user_id: str
    email: Optional[str] = None
    ebay: MarketplaceToken = Field(default_factory=MarketplaceToken)
    created_at: datetime = Field(default_factory=utc_now)
