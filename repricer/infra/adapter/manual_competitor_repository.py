from typing import List
from motor.motor_asyncio import AsyncIOMotorDatabase

from repricer.infra.adapter.base_repository import BaseRepository
from repricer.infra.adapter.entity.base_entity import utc_now
from repricer.infra.adapter.entity.competitor_entity import CompetitorSnapshot, ManualCompetitorList
from repricer.infra.config.config import COLLECTIONS


class ManualCompetitorRepository(BaseRepository):
    """
    One document per ``(user_id, item_id)``:
      {
        "user_id": str,
        "item_id": str,
        "competitors": [CompetitorSnapshot, ...]
      }
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        super().__init__(db)
        self.collection_name = COLLECTIONS["manual_competitors"]

    async def get_competitors(self, user_id: str, item_id: str) -> List[CompetitorSnapshot]:
        doc = await self.find_one(self.collection_name, {"user_id": user_id, "item_id": item_id})
        if not doc:
            return []
        return ManualCompetitorList(**doc).competitors

    async def get_competitors_for_item(self, item_id: str) -> List[CompetitorSnapshot]:
        doc = await self.find_one(self.collection_name, {"item_id": item_id})
        if not doc:
            return []
        return ManualCompetitorList(**doc).competitors

    async def upsert_competitor(self, user_id: str, item_id: str, competitor: CompetitorSnapshot):
        """
        Adds the competitor, replacing an earlier entry with the same
        ``competitor_item_id``. Creates the list document if it is missing.
        """
        query = {"user_id": user_id, "item_id": item_id}
        existing_doc = await self.find_one(self.collection_name, query)
        if existing_doc:
            await self.update_one(
                self.collection_name,
                query,
                {"$pull": {"competitors": {"competitor_item_id": competitor.competitor_item_id}}},
            )
            await self.update_one(
                self.collection_name,
                query,
                {
                    "$push": {"competitors": competitor.model_dump()},
                    "$set": {"updated_at": utc_now()},
                },
            )
        else:
            doc = ManualCompetitorList(user_id=user_id, item_id=item_id, competitors=[competitor])
            await self.create_one(self.collection_name, doc.to_document())

    async def remove_competitor(self, user_id: str, item_id: str, competitor_item_id: str) -> int:
        return await self.update_one(
            self.collection_name,
            {"user_id": user_id, "item_id": item_id, "competitors.competitor_item_id": competitor_item_id},
            {
                "$pull": {"competitors": {"competitor_item_id": competitor_item_id}},
                "$set": {"updated_at": utc_now()},
            },
        )

    async def item_ids_with_competitors(self) -> List[str]:
        docs = await self.find_many(self.collection_name, {"competitors": {"$exists": True, "$ne": []}})
        return [doc["item_id"] for doc in docs]
