"""
Tests for the rate-limited, cached product search client.
"""
import asyncio

import httpx
import pytest

from conftest import T0, FakeClock, RecordingHandler, provider_item, search_payload
from contracts.models import MarketplaceItem, RateLimiterState
from services.product_search_service import (
    get_search_index,
    normalize_item,
    normalize_search_payload,
    search_cache_key,
)
from services.rate_limiter import RateLimiter


def ok(payload):
    return lambda request: httpx.Response(200, json=payload)


# ============================================================================
# Payload translation
# ============================================================================

def test_nested_item_is_normalized():
    item = normalize_item(provider_item(
        "B0SHOE",
        "White leather sneakers",
        price_cents=8950,
        CustomerReviews={"StarRating": {"Value": 4.4}, "Count": 812},
        ItemInfo={"Title": {"DisplayValue": "White leather sneakers"}, "Features": {"DisplayValues": ["Leather upper", "Rubber sole"]}},
    ))

    assert item.id == "B0SHOE"
    assert item.title == "White leather sneakers"
    assert item.price == pytest.approx(89.50)
    assert item.currency == "USD"
    assert item.rating == pytest.approx(4.4)
    assert item.review_count == 812
    assert item.features == ["Leather upper", "Rubber sole"]
    assert item.image_url == "https://m.media-amazon.com/images/I/B0SHOE.jpg"


def test_missing_fields_default_deterministically():
    item = normalize_item({"ASIN": "B0BARE"})

    assert item.price == 0
    assert item.rating == 0
    assert item.review_count == 0
    assert item.image_url is None
    assert item.features == []
    assert item.detail_url == "https://amazon.com/dp/B0BARE?tag=stylemuse-20"


def test_flat_item_rating_is_clamped():
    item = normalize_item({"asin": "B0FLAT", "title": "Red scarf", "price": 19.99, "rating": 7})
    assert item.price == pytest.approx(19.99)
    assert item.rating == 5.0


def test_item_without_id_is_dropped():
    assert normalize_item({"title": "No id"}) is None
    assert normalize_item("garbage") is None


def test_malformed_payloads():
    assert normalize_search_payload([1, 2, 3]) is None
    assert normalize_search_payload({"SearchResult": {"Items": "nope"}}) is None
    assert normalize_search_payload({"Errors": [{"Code": "NoResults"}]}) == []


def test_unmapped_category_uses_default_bucket():
    assert get_search_index("shoes") == "Shoes"
    assert get_search_index("Swimwear") == "Fashion"
    assert get_search_index(None) == "Fashion"


def test_cache_key_is_normalized():
    assert search_cache_key("  Shoes ") == "search:shoes:all"
    assert search_cache_key("red   scarf", "Accessories") == "search:red scarf:accessories"


# ============================================================================
# Client behavior
# ============================================================================

@pytest.mark.asyncio
async def test_search_then_cache_hit_skips_limiter(make_search_client, limiter):
    handler = RecordingHandler(ok(search_payload(provider_item("B01", "Navy chinos"), provider_item("B02", "Khaki chinos"))))
    client = make_search_client(handler)

    first = await client.search("chinos", "bottom")
    second = await client.search("chinos", "bottom")

    assert [i.id for i in first.items] == ["B01", "B02"]
    assert first.error is None and not first.from_cache
    assert second.from_cache
    assert [i.id for i in second.items] == ["B01", "B02"]
    assert len(handler.requests) == 1
    assert limiter.state.hourly_count == 1
    assert second.items is not first.items


@pytest.mark.asyncio
async def test_request_carries_query_index_and_partner_tag(make_search_client):
    handler = RecordingHandler(ok(search_payload()))
    client = make_search_client(handler)

    await client.search("red scarf", "swimwear")

    body = handler.bodies[0]
    assert str(handler.requests[0].url) == "https://marketplace.test/paapi5/searchitems"
    assert body["Keywords"] == "red scarf"
    assert body["SearchIndex"] == "Fashion"
    assert body["PartnerTag"] == "stylemuse-20"


@pytest.mark.asyncio
async def test_rate_limited_search_makes_no_external_call(make_search_client, cache):
    clock = FakeClock()
    exhausted = RateLimiter(
        max_per_hour=10,
        min_interval_ms=1000,
        clock=clock,
        state=RateLimiterState(hourly_count=10, hourly_window_started_at=T0 - 60),
    )
    handler = RecordingHandler(ok(search_payload(provider_item("B01", "Red scarf"))))
    client = make_search_client(handler, rate_limiter=exhausted)

    outcome = await client.search("red scarf")

    assert outcome.items == []
    assert outcome.error.type == "RATE_LIMITED"
    assert outcome.error.retry_after_ms > 0
    assert handler.requests == []
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_expired_cache_entry_triggers_fresh_search(make_search_client, cache, clock):
    stale = [MarketplaceItem(id="OLD", title="Old shoes")]
    cache.set("search:shoes:all", stale, ttl=3600)
    clock.advance(2 * 3600)
    handler = RecordingHandler(ok(search_payload(provider_item("NEW", "New shoes"))))
    client = make_search_client(handler)

    outcome = await client.search("shoes")

    assert len(handler.requests) == 1
    assert [i.id for i in outcome.items] == ["NEW"]
    entry = cache.entry("search:shoes:all")
    assert entry.created_at == clock.now
    assert [i.id for i in entry.data] == ["NEW"]


@pytest.mark.asyncio
async def test_malformed_payload_is_zero_results_not_cached(make_search_client, cache, limiter):
    handler = RecordingHandler(ok({"SearchResult": {"Items": {"unexpected": True}}}))
    client = make_search_client(handler)

    outcome = await client.search("linen shirt")

    assert outcome.items == []
    assert outcome.error.type == "INVALID_RESPONSE"
    assert limiter.state.hourly_count == 1
    assert search_cache_key("linen shirt") not in cache


@pytest.mark.asyncio
async def test_non_json_body_is_invalid_response(make_search_client):
    handler = RecordingHandler(lambda request: httpx.Response(200, text="<html>busy</html>"))
    client = make_search_client(handler)

    outcome = await client.search("linen shirt")

    assert outcome.items == []
    assert outcome.error.type == "INVALID_RESPONSE"
    assert outcome.error.user_message() == "no similar items found"


@pytest.mark.asyncio
async def test_transport_failure_is_network_error(make_search_client, limiter):
    def boom(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_search_client(RecordingHandler(boom))

    outcome = await client.search("wool coat")

    assert outcome.items == []
    assert outcome.error.type == "NETWORK_ERROR"
    assert client.last_error == outcome.error
    assert limiter.state.hourly_count == 0


@pytest.mark.asyncio
async def test_http_error_status_is_network_error(make_search_client):
    client = make_search_client(RecordingHandler(lambda request: httpx.Response(503)))

    outcome = await client.search("wool coat")

    assert outcome.error.type == "NETWORK_ERROR"


@pytest.mark.asyncio
async def test_empty_query_short_circuits(make_search_client, limiter):
    handler = RecordingHandler(ok(search_payload()))
    client = make_search_client(handler)

    outcome = await client.search("   ")

    assert outcome.items == [] and outcome.error is None
    assert handler.requests == []
    assert limiter.state.hourly_count == 0


@pytest.mark.asyncio
async def test_get_details_found_and_cached(make_search_client):
    handler = RecordingHandler(ok({"ItemsResult": {"Items": [provider_item("B0DET", "Camel coat")]}}))
    client = make_search_client(handler)

    first = await client.get_details("B0DET")
    second = await client.get_details("B0DET")

    assert first.item.title == "Camel coat"
    assert second.from_cache and second.item == first.item
    assert handler.bodies[0]["ItemIds"] == ["B0DET"]
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_get_details_not_found(make_search_client):
    client = make_search_client(RecordingHandler(ok({"ItemsResult": {"Items": []}})))

    outcome = await client.get_details("B0GONE")

    assert outcome.item is None
    assert outcome.error.type == "NOT_FOUND"


@pytest.mark.asyncio
async def test_get_details_rate_limited_is_not_found(make_search_client, limiter):
    handler = RecordingHandler(ok({"ItemsResult": {"Items": [provider_item("B0A", "A")]}}))
    client = make_search_client(handler)
    limiter.record_call()

    outcome = await client.get_details("B0A")

    assert outcome.item is None
    assert outcome.error.type == "RATE_LIMITED"
    assert handler.requests == []


# ============================================================================
# Concurrent lookups
# ============================================================================

@pytest.mark.asyncio
async def test_concurrent_different_queries_respect_spacing(make_search_client, limiter):
    handler = RecordingHandler(ok(search_payload(provider_item("B01", "Scarf"))))
    client = make_search_client(handler)

    red, blue = await asyncio.gather(client.search("red scarf"), client.search("blue scarf"))

    assert len(handler.requests) == 1
    assert limiter.state.hourly_count == 1
    assert [o.error.type if o.error else None for o in (red, blue)] == [None, "RATE_LIMITED"]
    assert blue.items == [] and blue.error.retry_after_ms > 0


@pytest.mark.asyncio
async def test_concurrent_identical_queries_share_one_call(make_search_client, limiter):
    handler = RecordingHandler(ok(search_payload(provider_item("B01", "Red scarf"))))
    client = make_search_client(handler)

    first, second = await asyncio.gather(client.search("red scarf"), client.search("Red Scarf "))

    assert len(handler.requests) == 1
    assert limiter.state.hourly_count == 1
    assert first.error is None and second.error is None
    assert [i.id for i in first.items] == [i.id for i in second.items] == ["B01"]
    assert first.items is not second.items


@pytest.mark.asyncio
async def test_concurrent_identical_details_share_one_call(make_search_client):
    handler = RecordingHandler(ok({"ItemsResult": {"Items": [provider_item("B0DET", "Camel coat")]}}))
    client = make_search_client(handler)

    first, second = await asyncio.gather(client.get_details("B0DET"), client.get_details("B0DET"))

    assert len(handler.requests) == 1
    assert first.item == second.item
    assert first.item.title == "Camel coat"
