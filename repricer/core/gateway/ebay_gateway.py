import asyncio
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging

import requests

from repricer.core.errors import ExternalApiError, NotFoundError
from repricer.core.gateway.marketplace_gateway import MarketplaceGateway, PriceUpdateResult
from repricer.core.gateway.token_provider import TokenProvider
from repricer.core.scheduler.rate_limiter import RateLimiter
from repricer.infra.adapter.entity.competitor_entity import CompetitorSnapshot
from repricer.infra.adapter.entity.listing_entity import Listing
from repricer.infra.adapter.entity.price_history_entity import ApiErrorDetail, TimeoutDetail
from repricer.infra.adapter.listing_repository import ListingRepository
from repricer.infra.adapter.manual_competitor_repository import ManualCompetitorRepository

logger = logging.getLogger(__name__)

OFFER_PATH = "/sell/inventory/v1/offer"
BULK_PRICE_PATH = "/sell/inventory/v1/bulk_update_price_quantity"


class EbayGateway(MarketplaceGateway):
    """
    eBay Sell Inventory API adapter.

    Competitors come from the seller's manual list in Mongo; prices are read
    from and written to the listing's inventory offer. ``requests`` calls run
    in a worker thread so the event loop keeps serving other items.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        listing_repo: ListingRepository,
        competitor_repo: ManualCompetitorRepository,
        api_base_url: str = "https://api.ebay.com",
        currency: str = "USD",
        timeout: float = 30,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.token_provider = token_provider
        self.listing_repo = listing_repo
        self.competitor_repo = competitor_repo
        self.api_base_url = api_base_url.rstrip("/")
        self.currency = currency
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self.session = requests.Session()

    async def get_manual_competitors(self, item_id: str, user_id: Optional[str] = None) -> List[CompetitorSnapshot]:
        if user_id:
            return await self.competitor_repo.get_competitors(user_id, item_id)
        return await self.competitor_repo.get_competitors_for_item(item_id)

    async def get_current_price(self, item_id: str, sku: Optional[str] = None, user_id: Optional[str] = None) -> float:
        listing = await self._listing(item_id, sku, user_id)
        offer = await self._get_offer(listing)
        try:
            return float(offer["pricingSummary"]["price"]["value"])
        except (KeyError, TypeError, ValueError) as e:
            raise ExternalApiError(
                f"Offer for item {item_id} has no price",
                ApiErrorDetail(operation="get_current_price", message=str(e), response=offer),
            ) from e

    async def update_price(
        self,
        item_id: str,
        new_price: float,
        sku: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> PriceUpdateResult:
        listing = await self._listing(item_id, sku, user_id)
        if not listing.offer_id:
            offer = await self._get_offer(listing)
            offer_id = offer.get("offerId")
        else:
            offer_id = listing.offer_id

        body = {
            "requests": [
                {
                    "sku": listing.sku,
                    "offers": [
                        {
                            "offerId": offer_id,
                            "price": {
                                "value": str(Decimal(str(new_price)).quantize(Decimal("0.01"))),
                                "currency": self.currency,
                            },
                        }
                    ],
                }
            ]
        }
        resp = await self._request("POST", BULK_PRICE_PATH, listing.user_id, json=body)
        payload = self._json(resp)

        if not resp.ok:
            return PriceUpdateResult(
                success=False,
                raw=payload,
                error=f"eBay returned {resp.status_code}",
                status_code=resp.status_code,
            )

        responses = payload.get("responses", [])
        errors = [r for r in responses if r.get("statusCode", 200) >= 400 or r.get("errors")]
        if errors:
            message = "; ".join(
                e.get("message", "unknown error") for r in errors for e in r.get("errors", [])
            ) or "eBay rejected the price update"
            return PriceUpdateResult(success=False, raw=payload, error=message, status_code=resp.status_code)

        logger.info(f"Updated eBay price for item {item_id} to {new_price}")
        return PriceUpdateResult(success=True, raw=payload, status_code=resp.status_code)

    async def _listing(self, item_id: str, sku: Optional[str], user_id: Optional[str]) -> Listing:
        listing = await self.listing_repo.get(item_id, sku, user_id)
        if listing is None:
            raise NotFoundError("Listing", item_id)
        return listing

    async def _get_offer(self, listing: Listing) -> Dict[str, Any]:
        if listing.offer_id:
            resp = await self._request("GET", f"{OFFER_PATH}/{listing.offer_id}", listing.user_id)
            self._raise_for_status(resp, "get_offer")
            return self._json(resp)

        if not listing.sku:
            raise ExternalApiError(
                f"Listing {listing.item_id} has neither offer id nor SKU",
                ApiErrorDetail(operation="get_offer", message="missing offer id and sku"),
            )
        resp = await self._request("GET", OFFER_PATH, listing.user_id, params={"sku": listing.sku})
        self._raise_for_status(resp, "get_offer")
        offers = self._json(resp).get("offers", [])
        if not offers:
            raise ExternalApiError(
                f"No eBay offer found for SKU {listing.sku}",
                ApiErrorDetail(operation="get_offer", message="no offers", status_code=resp.status_code),
            )
        return offers[0]

    async def _request(self, method: str, path: str, user_id: str, retry_auth: bool = True, **kwargs) -> requests.Response:
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

        token = await self.token_provider.acquire(user_id)
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Content-Language": "en-US",
        }
        try:
            resp = await asyncio.to_thread(
                self.session.request,
                method,
                f"{self.api_base_url}{path}",
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.exceptions.Timeout as e:
            raise ExternalApiError(
                f"eBay {method} {path} timed out",
                TimeoutDetail(operation=path, timeout_seconds=self.timeout),
            ) from e
        except requests.exceptions.RequestException as e:
            raise ExternalApiError(
                f"eBay {method} {path} failed: {str(e)}",
                ApiErrorDetail(operation=path, message=str(e)),
            ) from e

        if resp.status_code == 401 and retry_auth:
            logger.warning(f"eBay rejected the access token for user {user_id}, refreshing")
            await self.token_provider.refresh(user_id)
            return await self._request(method, path, user_id, retry_auth=False, **kwargs)
        return resp

    @staticmethod
    def _json(resp: requests.Response) -> Dict[str, Any]:
        try:
            payload = resp.json()
        except ValueError:
            return {"text": resp.text[:500]}
        return payload if isinstance(payload, dict) else {"data": payload}

    def _raise_for_status(self, resp: requests.Response, operation: str):
        if resp.ok:
            return
        raise ExternalApiError(
            f"eBay {operation} failed with status {resp.status_code}",
            ApiErrorDetail(
                operation=operation,
                message=resp.text[:500],
                status_code=resp.status_code,
                response=self._json(resp),
            ),
        )
