import asyncio
import base64
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Dict, Optional
import logging

import requests

from repricer.core.errors import ExternalApiError
from repricer.infra.adapter.entity.base_entity import utc_now
from repricer.infra.adapter.entity.price_history_entity import ApiErrorDetail, TimeoutDetail
from repricer.infra.adapter.entity.user_entity import MarketplaceToken
from repricer.infra.adapter.user_repository import UserRepository

logger = logging.getLogger(__name__)

TOKEN_PATH = "/identity/v1/oauth2/token"


class TokenProvider(ABC):
    """Owns marketplace credentials for each seller."""

    @abstractmethod
    async def acquire(self, user_id: str) -> str:
        """A currently valid access token, refreshing it first if needed."""

    @abstractmethod
    async def is_valid(self, user_id: str) -> bool:
        """Whether the stored access token can still be used."""

    @abstractmethod
    async def refresh(self, user_id: str) -> str:
        """Force a refresh, e.g. after the marketplace rejected the token."""


class EbayTokenProvider(TokenProvider):
    """
    Access tokens live on the user document and are refreshed with the
    OAuth refresh-token grant. Refreshes are serialized per user so that a
    burst of expired calls triggers a single token request.
    """

    def __init__(
        self,
        user_repo: UserRepository,
        client_id: str,
        client_secret: str,
        scopes: str,
        api_base_url: str = "https://api.ebay.com",
        timeout: float = 30,
    ):
        self.user_repo = user_repo
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = scopes
        self.token_url = f"{api_base_url.rstrip('/')}{TOKEN_PATH}"
        self.timeout = timeout
        self._refresh_locks: Dict[str, asyncio.Lock] = {}
        self._waiting: Dict[str, int] = {}

    async def is_valid(self, user_id: str) -> bool:
        return await self._valid_token(user_id) is not None

    async def acquire(self, user_id: str) -> str:
        token = await self._valid_token(user_id)
        if token is not None:
            return token.access_token

        async with self._locked(user_id):
            # another caller may have refreshed while we waited
            token = await self.user_repo.get_token(user_id)
            if token is not None and token.is_valid():
                return token.access_token
            return await self._refresh(user_id, token)

    async def refresh(self, user_id: str) -> str:
        async with self._locked(user_id):
            token = await self.user_repo.get_token(user_id)
            return await self._refresh(user_id, token)

    async def _valid_token(self, user_id: str) -> Optional[MarketplaceToken]:
        token = await self.user_repo.get_token(user_id)
        if token is not None and token.is_valid():
            return token
        return None

    @asynccontextmanager
    async def _locked(self, user_id: str):
        lock = self._refresh_locks.setdefault(user_id, asyncio.Lock())
        self._waiting[user_id] = self._waiting.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiting[user_id] -= 1
            if not self._waiting[user_id]:
                del self._waiting[user_id]
                del self._refresh_locks[user_id]

    async def _refresh(self, user_id: str, token: Optional[MarketplaceToken]) -> str:
        if token is None or not token.refresh_token:
            raise ExternalApiError(
                f"No eBay refresh token stored for user {user_id}",
                ApiErrorDetail(operation="token_refresh", message="missing refresh token"),
            )
        if not self.client_id or not self.client_secret:
            raise ExternalApiError(
                "eBay client credentials are not configured",
                ApiErrorDetail(operation="token_refresh", message="missing client credentials"),
            )

        payload = await self._request_token(token.refresh_token)
        new_token = MarketplaceToken(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token", token.refresh_token),
            expires_at=utc_now() + timedelta(seconds=int(payload.get("expires_in", 7200))),
        )
        await self.user_repo.save_token(user_id, new_token)
        logger.info(f"Refreshed eBay access token for user {user_id}")
        return new_token.access_token

    async def _request_token(self, refresh_token: str) -> dict:
        basic = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
        headers = {
            "Authorization": f"Basic {basic}",
            "Content-Type": "application/x-www-form-urlencoded",
        }
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "scope": self.scopes,
        }
        try:
            resp = await asyncio.to_thread(
                requests.post,
                self.token_url,
                headers=headers,
                data=data,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise ExternalApiError(
                "eBay token request timed out",
                TimeoutDetail(operation="token_refresh", timeout_seconds=self.timeout),
            ) from e
        except requests.exceptions.RequestException as e:
            raise ExternalApiError(
                f"eBay token request failed: {str(e)}",
                ApiErrorDetail(operation="token_refresh", message=str(e)),
            ) from e

        if not resp.ok:
            logger.error(f"eBay token refresh failed: {resp.status_code}")
            raise ExternalApiError(
                f"eBay token refresh failed with status {resp.status_code}",
                ApiErrorDetail(
                    operation="token_refresh",
                    message=resp.text[:500],
                    status_code=resp.status_code,
                ),
            )
        return resp.json()
