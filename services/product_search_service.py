"""
Product Search Client

Wraps the marketplace transport with the process-wide rate limiter and the
response cache, and translates heterogeneous provider payloads into
MarketplaceItem.

Flow for every lookup:
1. Response cache hit -> return immediately (no budget consumed)
2. Same key already in flight -> await that lookup instead of calling out
3. RateLimiter.try_acquire() denied -> empty result + RATE_LIMITED error
4. External call -> normalize -> RateLimiter.record_call() -> cache -> return

Steps 3-4 run under one asyncio.Lock, so concurrent lookups cannot both
pass the spacing check before either call is recorded.

Errors are returned, not raised: transport failures become NETWORK_ERROR,
malformed payloads become zero results with INVALID_RESPONSE.
"""

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx
from pydantic import ValidationError

import config
from contracts.models import DetailsOutcome, MarketplaceItem, SearchOutcome, ServiceError
from integrations.affiliate_manager import generate_affiliate_link
from integrations.marketplace_api import MarketplaceAPIClient
from services.rate_limiter import RateLimiter, get_rate_limiter
from services.response_cache import ResponseCache, get_response_cache

logger = logging.getLogger(__name__)

T = TypeVar("T")

MERCHANT = "amazon"

# Category -> provider search index. Unmapped input falls through to the default.
CATEGORY_SEARCH_INDEX = {
    "top": "FashionWomen",
    "tops": "FashionWomen",
    "bottom": "FashionWomen",
    "bottoms": "FashionWomen",
    "shoes": "Shoes",
    "jacket": "FashionWomen",
    "jackets": "FashionWomen",
    "hat": "Fashion",
    "accessories": "Fashion",
    "men": "FashionMen",
    "women": "FashionWomen",
}
DEFAULT_SEARCH_INDEX = "Fashion"


def get_search_index(category: Optional[str]) -> str:
    """Map a wardrobe category onto the provider taxonomy."""
    if not category:
        return DEFAULT_SEARCH_INDEX
    return CATEGORY_SEARCH_INDEX.get(category.strip().lower(), DEFAULT_SEARCH_INDEX)


def normalize_query(query: str) -> str:
    return re.sub(r"\s+", " ", query.strip().lower())


def search_cache_key(query: str, category: Optional[str] = None) -> str:
    """Deterministic cache key for a search (e.g. ``search:shoes:all``)."""
    return f"search:{normalize_query(query)}:{(category or 'all').strip().lower()}"


def details_cache_key(item_id: str) -> str:
    return f"details:{item_id}"


# ============================================================================
# Payload translation
# ============================================================================

def _dig(data: Any, *path) -> Any:
    """Walk nested dicts/lists, returning None on any missing step."""
    for step in path:
        if isinstance(step, int):
            if not isinstance(data, list) or len(data) <= step:
                return None
        elif not isinstance(data, dict):
            return None
        data = data[step] if isinstance(step, int) else data.get(step)
        if data is None:
            return None
    return data


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def normalize_item(raw: Any) -> Optional[MarketplaceItem]:
    """
    Translate one provider item (flat or nested shape) into MarketplaceItem.

    Missing fields default deterministically: price 0, rating 0,
    review_count 0, image None, features []. Items without an identifier are
    dropped (returns None).
    """
    if not isinstance(raw, dict):
        return None

    item_id = raw.get("asin") or raw.get("ASIN") or raw.get("id")
    if not item_id:
        return None
    item_id = str(item_id)

    listing_price = _dig(raw, "Offers", "Listings", 0, "Price")
    listing_amount = _as_float(_dig(listing_price, "Amount")) / 100 if listing_price else 0.0

    features = raw.get("features") or _dig(raw, "ItemInfo", "Features", "DisplayValues") or []
    if not isinstance(features, list):
        features = [features]

    rating = _as_float(raw.get("rating") or _dig(raw, "CustomerReviews", "StarRating", "Value"))

    try:
        return MarketplaceItem(
            id=item_id,
            title=str(raw.get("title") or _dig(raw, "ItemInfo", "Title", "DisplayValue") or "Untitled"),
            image_url=raw.get("imageUrl") or _dig(raw, "Images", "Primary", "Large", "URL") or None,
            price=_as_float(raw.get("price")) or listing_amount,
            currency=str(raw.get("currency") or _dig(listing_price, "Currency") or config.DEFAULT_CURRENCY),
            rating=min(max(rating, 0.0), 5.0),
            review_count=max(0, _as_int(raw.get("reviewCount") or _dig(raw, "CustomerReviews", "Count"))),
            detail_url=str(raw.get("detailPageURL") or raw.get("DetailPageURL") or generate_affiliate_link(item_id)),
            features=[str(f) for f in features if f],
        )
    except ValidationError as e:
        logger.warning(f"Dropping unparseable provider item {item_id}: {e}")
        return None


def _extract_items(payload: Any, container: str) -> Optional[List[MarketplaceItem]]:
    """
    Pull the item list out of a provider payload.

    Returns None when the payload is malformed, [] when it is well-formed but
    empty.
    """
    if not isinstance(payload, dict):
        return None
    result = payload.get(container)
    if result is None:
        return []
    items = result.get("Items") if isinstance(result, dict) else None
    if items is None:
        return [] if isinstance(result, dict) else None
    if not isinstance(items, list):
        return None
    normalized = [normalize_item(raw) for raw in items]
    return [item for item in normalized if item is not None]


def normalize_search_payload(payload: Any) -> Optional[List[MarketplaceItem]]:
    return _extract_items(payload, "SearchResult")


def normalize_details_payload(payload: Any) -> Optional[List[MarketplaceItem]]:
    return _extract_items(payload, "ItemsResult")


# ============================================================================
# Client
# ============================================================================

class ProductSearchClient:
    """
    Rate-limited, cached marketplace search.
    """

    def __init__(
        self,
        api: Optional[MarketplaceAPIClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
        cache: Optional[ResponseCache] = None,
        search_ttl: float = config.SEARCH_CACHE_TTL,
        details_ttl: float = config.DETAILS_CACHE_TTL,
    ):
        """
        Args:
            api: Marketplace transport
            rate_limiter: Budget gate (defaults to the process-wide limiter)
            cache: Response cache (defaults to the process-wide cache)
            search_ttl: TTL for search results, seconds
            details_ttl: TTL for single-item details, seconds
        """
        self.api = api or MarketplaceAPIClient()
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.cache = cache or get_response_cache()
        self.search_ttl = search_ttl
        self.details_ttl = details_ttl
        self.last_error: Optional[ServiceError] = None
        self._call_lock = asyncio.Lock()
        self._in_flight: Dict[str, "asyncio.Future[Any]"] = {}

    async def close(self):
        await self.api.close()

    def _network_error(self, exc: Exception, fallback: str) -> ServiceError:
        return ServiceError(type="NETWORK_ERROR", message=str(exc) or fallback, merchant=MERCHANT)

    def _invalid_response(self) -> ServiceError:
        return ServiceError(type="INVALID_RESPONSE", message="Malformed provider response", merchant=MERCHANT)

    async def _single_flight(self, key: str, fetch: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``fetch`` once per cache key; concurrent callers for the same key
        await the lookup already in flight.
        """
        pending = self._in_flight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(fetch())
            self._in_flight[key] = pending
            pending.add_done_callback(lambda _: self._in_flight.pop(key, None))
        else:
            logger.debug(f"Joining in-flight lookup for {key}")
        return await asyncio.shield(pending)

    async def search(self, query: str, category: Optional[str] = None) -> SearchOutcome:
        """
        Search the marketplace.

        Args:
            query: Free-text query
            category: Optional wardrobe category (mapped to the provider taxonomy)

        Returns:
            SearchOutcome with a fresh list of items and an optional error
        """
        self.last_error = None
        if not query or not query.strip():
            return SearchOutcome()

        key = search_cache_key(query, category)
        cached = self.cache.get(key)
        if cached is not None:
            return SearchOutcome(items=list(cached), from_cache=True)

        outcome = await self._single_flight(key, lambda: self._fetch_search(key, query, category))
        self.last_error = outcome.error
        return outcome.model_copy(update={"items": list(outcome.items)})

    async def _fetch_search(self, key: str, query: str, category: Optional[str]) -> SearchOutcome:
        async with self._call_lock:
            decision = self.rate_limiter.try_acquire()
            if not decision.allowed:
                return SearchOutcome(error=decision.to_error())

            try:
                payload = await self.api.search_items(query.strip(), get_search_index(category))
            except (httpx.HTTPError, asyncio.TimeoutError) as e:
                logger.error(f"Marketplace search error: {e}")
                return SearchOutcome(error=self._network_error(e, "Failed to search products"))
            except ValueError as e:
                # Body was not JSON; the call itself happened
                self.rate_limiter.record_call()
                logger.warning(f"Marketplace search returned non-JSON body: {e}")
                return SearchOutcome(error=self._invalid_response())

            self.rate_limiter.record_call()

        items = normalize_search_payload(payload)
        if items is None:
            logger.warning(f"Malformed search payload for '{query[:50]}'")
            return SearchOutcome(error=self._invalid_response())

        self.cache.set(key, items, self.search_ttl)
        logger.info(f"Marketplace search '{query[:50]}' returned {len(items)} items")
        return SearchOutcome(items=list(items))

    async def get_details(self, item_id: str) -> DetailsOutcome:
        """
        Fetch one item by identifier.

        Returns:
            DetailsOutcome; ``item`` is None for NotFound
        """
        self.last_error = None
        if not item_id:
            return DetailsOutcome()

        key = details_cache_key(item_id)
        cached = self.cache.get(key)
        if cached is not None:
            return DetailsOutcome(item=cached, from_cache=True)

        outcome = await self._single_flight(key, lambda: self._fetch_details(key, item_id))
        self.last_error = outcome.error
        return outcome

    async def _fetch_details(self, key: str, item_id: str) -> DetailsOutcome:
        async with self._call_lock:
            decision = self.rate_limiter.try_acquire()
            if not decision.allowed:
                return DetailsOutcome(error=decision.to_error())

            try:
                payload = await self.api.get_items([item_id])
            except (httpx.HTTPError, asyncio.TimeoutError) as e:
                logger.error(f"Marketplace details error: {e}")
                return DetailsOutcome(error=self._network_error(e, "Failed to get product details"))
            except ValueError as e:
                self.rate_limiter.record_call()
                logger.warning(f"Marketplace details returned non-JSON body: {e}")
                return DetailsOutcome(error=self._invalid_response())

            self.rate_limiter.record_call()

        items = normalize_details_payload(payload)
        if items is None:
            return DetailsOutcome(error=self._invalid_response())
        if not items:
            return DetailsOutcome(
                error=ServiceError(type="NOT_FOUND", message=f"No item {item_id}", merchant=MERCHANT)
            )

        item = items[0]
        self.cache.set(key, item, self.details_ttl)
        return DetailsOutcome(item=item)


# Global service instance
_product_search_client: Optional[ProductSearchClient] = None


def get_product_search_client() -> ProductSearchClient:
    """Get or create global product search client."""
    global _product_search_client
    if _product_search_client is None:
        _product_search_client = ProductSearchClient()
    return _product_search_client
