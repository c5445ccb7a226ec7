from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from repricer.infra.adapter.base_repository import BaseRepository
from repricer.infra.adapter.entity.price_history_entity import PriceHistoryRecord
from repricer.infra.config.config import COLLECTIONS


class PriceHistoryRepository(BaseRepository):
    """Insert-only audit log; rows leave only through archive/cleanup."""

    def __init__(self, db: AsyncIOMotorDatabase):
        super().__init__(db)
        self.collection_name = COLLECTIONS["price_history"]

    @staticmethod
    def item_query(item_id: str, sku: Optional[str] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {"item_id": item_id}
        if sku:
            query["sku"] = sku
        return query

    async def insert(self, record: PriceHistoryRecord) -> PriceHistoryRecord:
        inserted_id = await self.create_one(self.collection_name, record.to_document())
        record.id = ObjectId(inserted_id)
        return record

    async def insert_many(self, records: List[PriceHistoryRecord]) -> List[PriceHistoryRecord]:
        if not records:
            return []
        inserted_ids = await self.create_many(self.collection_name, [r.to_document() for r in records])
        for record, inserted_id in zip(records, inserted_ids):
            record.id = ObjectId(inserted_id)
        return records

    async def find(
        self,
        query: Dict[str, Any],
        sort: Sequence[Tuple[str, int]] = (("created_at", -1),),
        skip: int = 0,
        limit: int = 0,
    ) -> List[PriceHistoryRecord]:
        docs = await self.find_many(self.collection_name, query, sort=sort, skip=skip, limit=limit)
        return [PriceHistoryRecord(**doc) for doc in docs]

    async def latest(self, query: Dict[str, Any]) -> Optional[PriceHistoryRecord]:
        doc = await self.find_one(self.collection_name, query, sort=[("created_at", -1)])
        return PriceHistoryRecord(**doc) if doc else None

    async def count_records(self, query: Dict[str, Any]) -> int:
        return await self.count(self.collection_name, query)

    async def item_ids(self) -> List[str]:
        return await self._db[self.collection_name].distinct("item_id")

    async def ids_beyond(self, item_id: str, keep_recent: int) -> List[ObjectId]:
        """Ids of an item's records older than its ``keep_recent`` newest."""
        docs = await self.find_many(
            self.collection_name,
            {"item_id": item_id},
            sort=[("created_at", -1), ("_id", -1)],
            skip=keep_recent,
        )
        return [doc["_id"] for doc in docs]

    async def delete_ids(self, ids: List[ObjectId]) -> int:
        if not ids:
            return 0
        return await self.delete_many(self.collection_name, {"_id": {"$in": ids}})

    async def delete_failed_before(self, cutoff: datetime) -> int:
        return await self.delete_many(
            self.collection_name,
            {"success": False, "created_at": {"$lt": cutoff}},
        )
