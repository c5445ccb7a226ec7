from typing import Any, Dict, List, Optional
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from repricer.infra.adapter.base_repository import BaseRepository
from repricer.infra.adapter.entity.base_entity import utc_now
from repricer.infra.adapter.entity.strategy_entity import PricingStrategy
from repricer.infra.config.config import COLLECTIONS


class StrategyRepository(BaseRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        super().__init__(db)
        self.collection_name = COLLECTIONS["strategies"]

    async def insert(self, strategy: PricingStrategy) -> PricingStrategy:
        inserted_id = await self.create_one(self.collection_name, strategy.to_document())
        strategy.id = ObjectId(inserted_id)
        return strategy

    async def get(self, strategy_id: ObjectId) -> Optional[PricingStrategy]:
        doc = await self.find_one(self.collection_name, {"_id": strategy_id})
        return PricingStrategy(**doc) if doc else None

    async def get_by_name(self, owner_id: Optional[str], strategy_name: str) -> Optional[PricingStrategy]:
        doc = await self.find_one(
            self.collection_name,
            {"owner_id": owner_id, "strategy_name": strategy_name},
        )
        return PricingStrategy(**doc) if doc else None

    async def list(self, owner_id: Optional[str] = None, is_active: Optional[bool] = None) -> List[PricingStrategy]:
        query: Dict[str, Any] = {}
        if owner_id is not None:
            query["owner_id"] = owner_id
        if is_active is not None:
            query["is_active"] = is_active
        docs = await self.find_many(self.collection_name, query, sort=[("created_at", -1)])
        return [PricingStrategy(**doc) for doc in docs]

    async def replace(self, strategy: PricingStrategy) -> int:
        document = strategy.to_document()
        document.pop("_id", None)
        document["updated_at"] = utc_now()
        return await self.update_one(self.collection_name, {"_id": strategy.id}, {"$set": document})

    async def delete(self, strategy_id: ObjectId) -> int:
        return await self.delete_one(self.collection_name, {"_id": strategy_id})

    async def mark_used(self, strategy_id: ObjectId):
        await self.update_one(
            self.collection_name,
            {"_id": strategy_id},
            {"$inc": {"usage_count": 1}, "$set": {"last_used": utc_now()}},
        )
