from datetime import datetime
from typing import Any, Dict, List, Optional
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from repricer.infra.adapter.base_repository import BaseRepository
from repricer.infra.adapter.entity.base_entity import utc_now
from repricer.infra.adapter.entity.listing_entity import Listing
from repricer.infra.config.config import COLLECTIONS


class ListingRepository(BaseRepository):
    """
    Listing documents carry a ``version`` counter. ``update_versioned`` only
    applies when the stored version still equals the one the caller read, and
    bumps it, so a lost race shows up as ``0`` modified documents.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        super().__init__(db)
        self.collection_name = COLLECTIONS["listings"]

    @staticmethod
    def _key(item_id: str, sku: Optional[str] = None, user_id: Optional[str] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {"item_id": item_id}
        if sku is not None:
            query["sku"] = sku
        if user_id is not None:
            query["user_id"] = user_id
        return query

    async def insert(self, listing: Listing) -> Listing:
        inserted_id = await self.create_one(self.collection_name, listing.to_document())
        listing.id = ObjectId(inserted_id)
        return listing

    async def get(self, item_id: str, sku: Optional[str] = None, user_id: Optional[str] = None) -> Optional[Listing]:
        doc = await self.find_one(self.collection_name, self._key(item_id, sku, user_id))
        return Listing(**doc) if doc else None

    async def find_monitored(self) -> List[Listing]:
        docs = await self.find_many(
            self.collection_name,
            {"monitoring_enabled": True, "strategy_id": {"$ne": None}},
            sort=[("item_id", 1)],
        )
        return [Listing(**doc) for doc in docs]

    async def find_by_item_ids(self, item_ids: List[str]) -> List[Listing]:
        if not item_ids:
            return []
        docs = await self.find_many(self.collection_name, {"item_id": {"$in": item_ids}})
        return [Listing(**doc) for doc in docs]

    async def count_with_strategy(self, strategy_id: ObjectId) -> int:
        return await self.count(self.collection_name, {"strategy_id": strategy_id})

    async def update_versioned(self, listing: Listing, changes: Dict[str, Any]) -> int:
        """Returns 1 when applied, 0 when another writer got there first."""
        return await self.update_one(
            self.collection_name,
            {"_id": listing.id, "version": listing.version},
            {"$set": changes, "$inc": {"version": 1}},
        )

    async def record_price(self, listing_id: ObjectId, price: float, repriced: bool):
        changes: Dict[str, Any] = {"last_known_price": price}
        if repriced:
            changes["last_repriced_at"] = utc_now()
        await self.update_one(
            self.collection_name,
            {"_id": listing_id},
            {"$set": changes, "$inc": {"version": 1}},
        )

    async def touch_monitoring_check(self, listing_ids: List[ObjectId], checked_at: Optional[datetime] = None) -> int:
        if not listing_ids:
            return 0
        result = await self._db[self.collection_name].update_many(
            {"_id": {"$in": listing_ids}},
            {"$set": {"last_monitoring_check": checked_at or utc_now()}},
        )
        return result.modified_count
