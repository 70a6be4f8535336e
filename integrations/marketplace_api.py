"""
Marketplace Product Advertising API transport.

Thin async HTTP layer over the provider's SearchItems / GetItems operations.
Returns the provider's raw JSON; translation into MarketplaceItem happens in
services/product_search_service.py and nowhere else.

Errors are not swallowed here: httpx errors and timeouts propagate so that the
search client can classify them.
"""

import logging
from typing import Dict, List, Optional

import httpx

import config

logger = logging.getLogger(__name__)

SEARCH_RESOURCES = [
    "Images.Primary.Large",
    "ItemInfo.Title",
    "ItemInfo.Features",
    "Offers.Listings.Price",
    "CustomerReviews.StarRating",
    "CustomerReviews.Count",
]

DETAIL_RESOURCES = SEARCH_RESOURCES + ["ItemInfo.ContentInfo"]


class MarketplaceAPIClient:
    """
    Client for the marketplace product-search provider.
    """

    def __init__(
        self,
        api_key: str = config.MARKETPLACE_API_KEY,
        api_secret: str = config.MARKETPLACE_API_SECRET,
        base_url: str = config.MARKETPLACE_BASE_URL,
        partner_tag: str = config.AFFILIATE_ASSOCIATE_TAG,
        timeout: float = config.MARKETPLACE_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize marketplace client.

        Args:
            api_key: Provider access key
            api_secret: Provider secret key
            base_url: API endpoint root
            partner_tag: Affiliate associate tag sent with each request
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.partner_tag = partner_tag
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self):
        """Close httpx client"""
        await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "X-Api-Secret": self.api_secret,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def _post(self, operation: str, body: Dict) -> Dict:
        response = await self._client.post(
            f"{self.base_url}/{operation.lower()}",
            json={**body, "PartnerTag": self.partner_tag, "PartnerType": "Associates"},
            headers=self._headers(),
        )
        response.raise_for_status()
        # ValueError on a non-JSON body is left to the caller
        return response.json()

    async def search_items(
        self,
        keywords: str,
        search_index: str = "Fashion",
        item_count: int = config.MARKETPLACE_ITEM_COUNT,
    ) -> Dict:
        """
        Run a SearchItems request.

        Args:
            keywords: Free-text query
            search_index: Provider taxonomy bucket
            item_count: Maximum number of items

        Returns:
            Raw provider payload (expected to contain ``SearchResult.Items``)
        """
        logger.info(f"[Marketplace] SearchItems '{keywords[:50]}' in {search_index}")
        return await self._post("SearchItems", {
            "Keywords": keywords,
            "SearchIndex": search_index,
            "ItemCount": item_count,
            "Resources": SEARCH_RESOURCES,
        })

    async def get_items(self, item_ids: List[str]) -> Dict:
        """
        Run a GetItems request.

        Returns:
            Raw provider payload (expected to contain ``ItemsResult.Items``)
        """
        logger.info(f"[Marketplace] GetItems {item_ids}")
        return await self._post("GetItems", {
            "ItemIds": item_ids,
            "Resources": DETAIL_RESOURCES,
        })
