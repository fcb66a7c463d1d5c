"""User lookups with a cached existence check."""

import logging
from typing import Optional

from commerce_bot.cache import Cache, cache as default_cache
from commerce_bot.database import UserRepository

logger = logging.getLogger(__name__)

USER_EXISTS_TTL_SECONDS = 3600


class UserService:
    def __init__(self, repository: UserRepository = None, cache: Cache = None):
        self.repository = repository or UserRepository()
        self.cache = cache if cache is not None else default_cache

    @staticmethod
    def _cache_key(phone_number: str) -> str:
        return f"user_exists:{phone_number}"

    async def exists_by_phone(self, phone_number: str) -> bool:
        """Cached existence check; an unreachable store counts as "not existing"."""
        cached = self.cache.get(self._cache_key(phone_number))
        if cached is not None:
            return cached

        try:
            exists = await self.repository.exists_by_phone(phone_number)
        except Exception as e:
            logger.warning(f"⚠️ User store unavailable, treating {phone_number} as new: {type(e).__name__}")
            return False

        self.cache.set(self._cache_key(phone_number), exists, USER_EXISTS_TTL_SECONDS)
        return exists

    async def find_by_phone(self, phone_number: str) -> Optional[dict]:
        return await self.repository.find_by_phone(phone_number)

    async def find_by_email(self, email: str) -> Optional[dict]:
        return await self.repository.find_by_email(email)

    async def create(self, fields: dict) -> dict:
        user = await self.repository.create(fields)
        self.cache.set(self._cache_key(fields["phone_number"]), True, USER_EXISTS_TTL_SECONDS)
        return user
