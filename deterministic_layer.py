# deterministic_layer.py
"""
Deterministic preprocessing layer for StyleMuse.
Handles wardrobe normalization, slot categorization and context pack generation.
All non-AI logic lives here to keep the planner focused on choice and composition.
"""
from typing import Any, Dict, List, Optional, Union
import hashlib
import json
import re
import logging

from contracts.models import GarmentDescriptor, OutfitContext, PlannerRequest
import config

logger = logging.getLogger(__name__)

# ============================================================================
# Slot Definitions
# ============================================================================

# Checked in order; the first slot with a matching keyword wins
SLOT_KEYWORDS = {
    "shoes": ["sneaker", "boot", "loafer", "sandal", "oxford", "heel", "flats", "mule", "wedge", "shoe", "trainer", "slipper"],
    "jacket": ["jacket", "blazer", "coat", "bomber", "cardigan", "parka", "kimono", "duster", "vest", "windbreaker"],
    "hat": ["hat", "beanie", "beret", "fedora", "bucket", "cap"],
    "bottom": ["jean", "denim", "chino", "trouser", "pant", "short", "jogger", "skirt", "legging", "culotte", "capri"],
    "top": ["shirt", "tee", "polo", "sweater", "hoodie", "tank", "henley", "blouse", "cami", "turtleneck", "top", "dress"],
    "accessories": ["watch", "belt", "sunglasses", "scarf", "bag", "bracelet", "necklace", "earring", "ring", "clutch", "jewelry"],
}

# Category labels a wardrobe may already carry
SLOT_SYNONYMS = {
    "top": "top", "tops": "top", "shirt": "top", "shirts": "top",
    "bottom": "bottom", "bottoms": "bottom", "pants": "bottom",
    "shoes": "shoes", "shoe": "shoes", "footwear": "shoes",
    "jacket": "jacket", "jackets": "jacket", "outerwear": "jacket",
    "hat": "hat", "hats": "hat", "headwear": "hat",
    "accessories": "accessories", "accessory": "accessories",
}

DEFAULT_SLOT = "accessories"
MAX_PACKED_TAGS = 8


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _derive_id(raw: dict) -> str:
    seed = f"{raw.get('title') or ''}|{raw.get('image') or ''}"
    return "item-" + hashlib.sha256(seed.encode()).hexdigest()[:12]


def normalize_wardrobe(items: List[Union[dict, GarmentDescriptor]]) -> List[GarmentDescriptor]:
    """
    Normalizes raw wardrobe data into GarmentDescriptor models.
    - Blank strings become None
    - Tags are deduplicated, order preserved
    - Items without an id get a deterministic one from title and image
    """
    norm = []
    for raw in items:
        if isinstance(raw, GarmentDescriptor):
            norm.append(raw)
            continue
        data = {k: _blank_to_none(v) for k, v in raw.items()}
        if not data.get("id"):
            data["id"] = _derive_id(data)
        data["id"] = str(data["id"])
        tags = [t.strip() for t in (data.get("tags") or []) if isinstance(t, str) and t.strip()]
        data["tags"] = list(dict.fromkeys(tags))
        norm.append(GarmentDescriptor(**data))
    return norm


def categorize_item(item: GarmentDescriptor) -> str:
    """
    Maps a wardrobe item onto an outfit slot.

    Uses the item's own category when it names a slot, otherwise keyword
    matching over title, style and description. Unmatched items land in
    accessories.
    """
    if item.category:
        slot = SLOT_SYNONYMS.get(item.category.strip().lower())
        if slot:
            return slot

    text = " ".join(p for p in (item.title, item.style, item.description, item.category) if p).lower()
    words = set(re.findall(r"[a-z]+", text))
    for slot, keywords in SLOT_KEYWORDS.items():
        if any(kw in words or kw + "s" in words or kw + "es" in words for kw in keywords):
            return slot
    return DEFAULT_SLOT


def build_planner_request(
    wardrobe: List[GarmentDescriptor],
    context: OutfitContext,
    style_profile: Optional[Dict[str, Any]] = None,
    seed_item_id: Optional[str] = None,
) -> PlannerRequest:
    return PlannerRequest(
        wardrobe=list(wardrobe),
        context=context,
        style_profile=style_profile,
        seed_item_id=seed_item_id,
    )


def pack_context(request: PlannerRequest) -> dict:
    """
    Main entry point for planner input.
    Compacts the wardrobe to the fields the planner needs and stamps the pack
    with a content hash for caching and debugging.

    Returns:
        context_pack: Structured dict ready for LLM consumption
    """
    compact_wardrobe = [
        {
            "id": w.id,
            "title": w.title,
            "category": w.category,
            "color": w.color,
            "material": w.material,
            "style": w.style,
            "fit": w.fit,
            "tags": w.tags[:MAX_PACKED_TAGS],  # Limit tags to prevent token bloat
        }
        for w in request.wardrobe
    ]
    seed = next((w for w in request.wardrobe if w.id == request.seed_item_id), None)

    context_pack = {
        "context": request.context.model_dump(exclude_none=True),
        "style_profile": request.style_profile or {},
        "seed_item": seed.title if seed else None,
        "slots": config.OUTFIT_SLOTS,
        "wardrobe_index": compact_wardrobe,
    }

    context_pack["_hash"] = hashlib.sha256(
        json.dumps(context_pack, sort_keys=True, default=str).encode()
    ).hexdigest()

    logger.debug(f"Packed {len(compact_wardrobe)} wardrobe items, hash {context_pack['_hash'][:12]}")
    return context_pack
