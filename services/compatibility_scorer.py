# services/compatibility_scorer.py
"""
Garment compatibility scoring.

Weighted additive model over independent factors. A factor only counts when
both garments carry the data it needs; missing data on either side
contributes nothing (not a penalty).

Factors:
- Lexical overlap of title+description words (> 3 chars): up to 40
- Category exact match: 30
- Color relation (bidirectional substring): 20
- Tag overlap against candidate title+description: up to 10

Final score = sum / contributing factors, x1.2 when more than one factor
contributed, capped at 100. With no contributing factor the score is a
neutral 50 ("cannot assess"), not 0.
"""
import re
from typing import List, Optional, Set, Tuple

from contracts.models import GarmentDescriptor, MarketplaceItem

LEXICAL_WEIGHT = 40.0
CATEGORY_WEIGHT = 30.0
COLOR_WEIGHT = 20.0
TAG_WEIGHT = 10.0

CORROBORATION_BONUS = 1.2
NEUTRAL_SCORE = 50.0
MIN_TOKEN_LENGTH = 4

_TOKEN_RE = re.compile(r"[a-z0-9']+")


def _text(garment: GarmentDescriptor) -> str:
    return " ".join(part for part in (garment.title, garment.description) if part).lower()


def tokenize(text: str) -> Set[str]:
    """Lower-cased words longer than 3 characters."""
    return {tok for tok in _TOKEN_RE.findall(text.lower()) if len(tok) >= MIN_TOKEN_LENGTH}


def color_match(reference_color: Optional[str], candidate_colors: List[str]) -> bool:
    """Case-insensitive substring match in either direction ("navy" ~ "navy blue")."""
    if not reference_color:
        return False
    ref = reference_color.strip().lower()
    return any(ref in c.lower() or c.lower() in ref for c in candidate_colors if c.strip())


def score(reference: GarmentDescriptor, candidate: GarmentDescriptor) -> Tuple[float, str]:
    """
    Score how well ``candidate`` matches ``reference``.

    Returns:
        (score in 0..100, short reasoning string)
    """
    total = 0.0
    factors = 0
    fired: List[str] = []

    ref_text = _text(reference)
    cand_text = _text(candidate)

    # 1. Lexical overlap
    ref_tokens = tokenize(ref_text)
    if ref_tokens and cand_text:
        common = ref_tokens & tokenize(cand_text)
        total += len(common) / len(ref_tokens) * LEXICAL_WEIGHT
        factors += 1

    # 2. Category
    if reference.category and candidate.category:
        if reference.category.strip().lower() == candidate.category.strip().lower():
            total += CATEGORY_WEIGHT
            fired.append("same category")
        factors += 1

    # 3. Color
    if reference.color and candidate.colors:
        if color_match(reference.color, candidate.colors):
            total += COLOR_WEIGHT
            fired.append("matching color palette")
        factors += 1

    # 4. Tags
    ref_tags = [t for t in reference.tags if t and t.strip()]
    if ref_tags and cand_text:
        matching = [t for t in ref_tags if t.strip().lower() in cand_text]
        if matching:
            total += len(matching) / len(ref_tags) * TAG_WEIGHT
            fired.append("shared details")
        factors += 1

    if factors == 0:
        return NEUTRAL_SCORE, "not enough detail to compare"

    value = total / factors * (CORROBORATION_BONUS if factors > 1 else 1.0)
    value = min(max(value, 0.0), 100.0)

    if reference.style and reference.style.strip().lower() in (candidate.title or "").lower():
        fired.append("similar style elements")

    return value, _reasoning(value, fired)


def _reasoning(value: float, fired: List[str]) -> str:
    if value >= 80:
        lead = "excellent style match"
    elif value >= 60:
        lead = "good style compatibility"
    else:
        lead = "similar aesthetic"
    return ", ".join([lead] + fired)


def marketplace_descriptor(item: MarketplaceItem, category: Optional[str] = None) -> GarmentDescriptor:
    """View a marketplace result as a garment for scoring."""
    return GarmentDescriptor(
        id=item.id,
        title=item.title,
        description=", ".join(item.features) or None,
        category=category,
        image=item.image_url,
    )
