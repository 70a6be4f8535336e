# main.py
"""
Main orchestrator for the StyleMuse closet engine.
Wires the components together and runs one demo session:
1. Outfit assembly around a selected wardrobe item (AI planner, heuristic fallback)
2. Similar marketplace items for that item (rate-limited, cached, persisted)
"""
import asyncio
import json
import logging

from redis.exceptions import RedisError

import config
from contracts.models import OutfitContext
from deterministic_layer import normalize_wardrobe
from infra.cache import MemoryKeyValueStore, RedisKeyValueStore
from integrations.image_generator import OpenAIImageGenerator
from llm_reasoning import OpenAIOutfitPlanner
from services.outfit_composer import OutfitComposer
from services.product_search_service import get_product_search_client
from services.recommendation_service import RecommendationService
from services.suggestion_store import PersistentSuggestionStore

logger = logging.getLogger(__name__)

DEMO_WARDROBE = [
    {
        "id": "item_000101",
        "title": "Blue cotton oxford shirt",
        "category": "Tops",
        "color": "blue",
        "material": "cotton",
        "style": "smart casual",
        "fit": "regular",
        "tags": ["button-down", "oxford", "long sleeve"],
        "image": "https://cdn.stylemuse.app/wardrobe/IMG_1001.png",
    },
    {
        "id": "item_000102",
        "title": "Dark denim jeans",
        "category": "Bottoms",
        "color": "indigo",
        "material": "denim",
        "style": "casual",
        "fit": "slim",
        "tags": ["five-pocket", "stretch"],
        "image": "https://cdn.stylemuse.app/wardrobe/IMG_1002.png",
    },
    {
        "id": "item_000103",
        "title": "White leather sneakers",
        "color": "white",
        "material": "leather",
        "style": "minimalist",
        "tags": ["low-top"],
        "image": "https://cdn.stylemuse.app/wardrobe/IMG_1003.png",
    },
    {
        "id": "item_000104",
        "title": "Navy wool blazer",
        "color": "navy blue",
        "material": "wool",
        "style": "smart casual",
        "fit": "tailored",
        "tags": ["unstructured"],
        "image": "https://cdn.stylemuse.app/wardrobe/IMG_1004.png",
    },
    {
        "id": "item_000105",
        "title": "Brown leather belt",
        "color": "brown",
        "material": "leather",
        "image": "https://cdn.stylemuse.app/wardrobe/IMG_1005.png",
    },
]


async def open_store():
    """Redis when reachable, otherwise an in-process store."""
    kv = RedisKeyValueStore(config.REDIS_URL)
    try:
        await kv.connect()
    except (RedisError, OSError) as e:
        logger.warning(f"Redis unavailable ({e}), using in-memory suggestion store")
        return MemoryKeyValueStore(), None
    return kv, kv


async def run_session(raw_wardrobe: list, seed_id: str, context: OutfitContext) -> dict:
    """
    Main entry point for a styling session.

    Args:
        raw_wardrobe: Wardrobe items as dicts
        seed_id: Id of the item the user selected
        context: Occasion / weather context

    Returns:
        dict with the assembled outfit and similar marketplace items
    """
    wardrobe = normalize_wardrobe(raw_wardrobe)
    seed = next(item for item in wardrobe if item.id == seed_id)

    composer = OutfitComposer(
        planner=OpenAIOutfitPlanner() if config.ENABLE_AI_PLANNER else None,
        image_generator=OpenAIImageGenerator() if config.ENABLE_IMAGE_GENERATION else None,
    )

    kv, redis_store = await open_store()
    search_client = get_product_search_client()
    recommender = RecommendationService(search_client, PersistentSuggestionStore(kv))

    try:
        print("Phase 1: Assembling outfit...")
        assembly = await composer.assemble(seed, wardrobe, context)

        print("Phase 2: Finding similar items...")
        similar = await recommender.find_similar(seed)
    finally:
        await search_client.close()
        if redis_store is not None:
            await redis_store.close()

    return {
        "outfit": assembly.model_dump(mode="json"),
        "similar": similar.model_dump(mode="json"),
        "messages": [m for m in (assembly.user_message(), similar.error and similar.error.user_message()) if m],
    }


if __name__ == "__main__":
    print("=" * 60)
    print("STYLEMUSE CLOSET ENGINE")
    print("=" * 60)
    print()

    result = asyncio.run(run_session(
        DEMO_WARDROBE,
        seed_id="item_000101",
        context=OutfitContext(
            occasion="Dinner with friends",
            location="Soho, New York",
            weather="14C, light breeze",
            time="evening",
            style_goal="Smart casual",
        ),
    ))

    print()
    print("=" * 60)
    print("RESULTS")
    print("=" * 60)
    print()
    print(json.dumps(result, indent=2))
