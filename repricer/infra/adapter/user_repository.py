from typing import Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from repricer.infra.adapter.base_repository import BaseRepository
from repricer.infra.adapter.entity.user_entity import MarketplaceToken, User
from repricer.infra.config.config import COLLECTIONS


class UserRepository(BaseRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        super().__init__(db)
        self.collection_name = COLLECTIONS["users"]

    async def get_user(self, user_id: str) -> Optional[User]:
        doc = await self.find_one(self.collection_name, {"user_id": user_id})
        return User(**doc) if doc else None

    async def get_token(self, user_id: str) -> Optional[MarketplaceToken]:
        user = await self.get_user(user_id)
        return user.ebay if user else None

    async def save_token(self, user_id: str, token: MarketplaceToken):
        existing_doc = await self.find_one(self.collection_name, {"user_id": user_id})
        if existing_doc:
            await self.update_one(
                self.collection_name,
                {"user_id": user_id},
                {"$set": {"ebay": token.model_dump()}},
            )
        else:
            await self.create_one(self.collection_name, User(user_id=user_id, ebay=token).to_document())
