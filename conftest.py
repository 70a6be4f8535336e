"""
Pytest configuration and shared fixtures for the StyleMuse closet engine tests.
"""
import json
import random
from typing import Callable, List

import httpx
import pytest

from contracts.models import GarmentDescriptor
from infra.cache import MemoryKeyValueStore
from integrations.marketplace_api import MarketplaceAPIClient
from services.product_search_service import ProductSearchClient
from services.rate_limiter import RateLimiter
from services.response_cache import ResponseCache

T0 = 1_700_000_000.0


class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingHandler:
    """httpx.MockTransport handler that records requests and replays a response."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]):
        self.respond = respond
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    @property
    def bodies(self) -> List[dict]:
        return [json.loads(r.content) for r in self.requests]


def search_payload(*items: dict) -> dict:
    return {"SearchResult": {"Items": list(items)}}


def provider_item(asin: str, title: str, price_cents: int = 4999, image: str = None, **extra) -> dict:
    """Nested provider-shaped item."""
    item = {
        "ASIN": asin,
        "DetailPageURL": f"https://amazon.com/dp/{asin}",
        "ItemInfo": {"Title": {"DisplayValue": title}},
        "Offers": {"Listings": [{"Price": {"Amount": price_cents, "Currency": "USD"}}]},
        "Images": {"Primary": {"Large": {"URL": image or f"https://m.media-amazon.com/images/I/{asin}.jpg"}}},
    }
    item.update(extra)
    return item


# ============================================================================
# Fixtures: Infrastructure
# ============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock) -> RateLimiter:
    return RateLimiter(max_per_hour=100, min_interval_ms=1000, clock=clock)


@pytest.fixture
def cache(clock) -> ResponseCache:
    return ResponseCache(clock=clock)


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def make_search_client(limiter, cache):
    """Build a ProductSearchClient over a MockTransport handler."""
    clients = []

    def _make(handler, rate_limiter=None) -> ProductSearchClient:
        api = MarketplaceAPIClient(
            api_key="k" * 24,
            api_secret="s" * 24,
            base_url="https://marketplace.test/paapi5",
            partner_tag="stylemuse-20",
            transport=httpx.MockTransport(handler),
        )
        client = ProductSearchClient(api=api, rate_limiter=rate_limiter or limiter, cache=cache)
        clients.append(client)
        return client

    return _make


@pytest.fixture
def seeded_rng() -> random.Random:
    return random.Random(42)


# ============================================================================
# Fixtures: Wardrobe
# ============================================================================

@pytest.fixture
def blue_shirt() -> GarmentDescriptor:
    return GarmentDescriptor(
        id="w-shirt",
        title="blue cotton shirt",
        description="Classic button-down shirt in breathable cotton",
        color="blue",
        material="cotton",
        style="casual",
        category="top",
        tags=["button-down", "cotton"],
        image="https://cdn.stylemuse.app/wardrobe/shirt.png",
    )


@pytest.fixture
def denim_jeans() -> GarmentDescriptor:
    return GarmentDescriptor(
        id="w-jeans",
        title="dark denim jeans",
        color="indigo",
        material="denim",
        category="bottom",
        image="https://cdn.stylemuse.app/wardrobe/jeans.png",
    )
