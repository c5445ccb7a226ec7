from typing import Any, Dict, List, Optional
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from repricer.infra.adapter.base_repository import BaseRepository
from repricer.infra.adapter.entity.base_entity import utc_now
from repricer.infra.adapter.entity.competitor_entity import CompetitorRule
from repricer.infra.config.config import COLLECTIONS


class CompetitorRuleRepository(BaseRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        super().__init__(db)
        self.collection_name = COLLECTIONS["rules"]

    async def insert(self, rule: CompetitorRule) -> CompetitorRule:
        inserted_id = await self.create_one(self.collection_name, rule.to_document())
        rule.id = ObjectId(inserted_id)
        return rule

    async def get(self, rule_id: ObjectId) -> Optional[CompetitorRule]:
        doc = await self.find_one(self.collection_name, {"_id": rule_id})
        return CompetitorRule(**doc) if doc else None

    async def list(self, owner_id: Optional[str] = None, is_active: Optional[bool] = None) -> List[CompetitorRule]:
        query: Dict[str, Any] = {}
        if owner_id is not None:
            query["owner_id"] = owner_id
        if is_active is not None:
            query["is_active"] = is_active
        docs = await self.find_many(self.collection_name, query, sort=[("created_at", -1)])
        return [CompetitorRule(**doc) for doc in docs]

    async def record_execution(self, rule_id: ObjectId, found: int, excluded: int):
        """Bump the rule's usage counters after a filter run."""
        await self.update_one(
            self.collection_name,
            {"_id": rule_id},
            {
                "$inc": {
                    "usage_count": 1,
                    "total_competitors_found": found,
                    "competitors_excluded": excluded,
                },
                "$set": {"last_execution": utc_now()},
            },
        )
