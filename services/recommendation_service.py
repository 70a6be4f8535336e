# services/recommendation_service.py
"""
Similar-Items Recommendation Service.

For a wardrobe item, finds marketplace items that look like it:

1. Persistent Suggestion Store hit -> return the stored batch
2. Product search by the item's title and category
3. Score every result against the item with the Compatibility Scorer
4. Build an immutable Recommendation batch (best first) and store it

Also runs the same pipeline across a wardrobe for a combined shortlist.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

import config
from contracts.models import (
    GarmentDescriptor,
    MarketplaceItem,
    Recommendation,
    ServiceError,
    SimilarItemsResult,
)
from services.compatibility_scorer import marketplace_descriptor, score
from services.product_search_service import ProductSearchClient
from services.suggestion_store import PersistentSuggestionStore

logger = logging.getLogger(__name__)

CONFIDENCE_BOOST = 10


def build_search_query(item: GarmentDescriptor) -> str:
    """Title first, then "<color> <style>", then a generic query."""
    if item.title and item.title.strip():
        return item.title.strip()
    parts = " ".join(p for p in (item.color, item.style) if p).strip()
    return parts or "clothing item"


class RecommendationService:
    """
    Find-similar pipeline over the search client, scorer and suggestion store.
    """

    def __init__(
        self,
        search_client: ProductSearchClient,
        store: Optional[PersistentSuggestionStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            search_client: Rate-limited, cached marketplace search
            store: Cross-session suggestion store (optional)
            clock: Returns current time in epoch seconds
        """
        self.search_client = search_client
        self.store = store
        self._clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def build_recommendations(
        self,
        item: GarmentDescriptor,
        results: List[MarketplaceItem],
    ) -> List[Recommendation]:
        """Score results against ``item`` and return them best first."""
        generated_at = self._now()
        scored = []
        for product in results:
            value, why = score(item, marketplace_descriptor(product, item.category))
            scored.append((round(value, 2), why, product))
        scored.sort(key=lambda entry: entry[0], reverse=True)

        return [
            Recommendation(
                id=f"{item.id}-{product.id}-{index}",
                type="similar",
                wardrobe_context=item,
                online_item=product,
                similarity_score=value,
                reasoning=why,
                confidence_level=min(value + CONFIDENCE_BOOST, 100),
                generated_at=generated_at,
            )
            for index, (value, why, product) in enumerate(scored)
        ]

    async def find_similar(self, item: GarmentDescriptor) -> SimilarItemsResult:
        """
        Find marketplace items similar to a wardrobe item.

        Returns:
            SimilarItemsResult; ``error`` explains an empty result
        """
        if self.store is not None:
            stored = await self.store.load(item.id)
            if stored:
                logger.info(f"Using stored suggestions for {item.id}")
                return SimilarItemsResult(
                    recommendations=stored,
                    preview_image=await self.store.load_preview(item.id),
                    searched_at=await self.store.load_timestamp(item.id),
                    from_cache=True,
                )

        query = build_search_query(item)
        outcome = await self.search_client.search(query, item.category)

        if not outcome.items:
            error = outcome.error or ServiceError(type="NOT_FOUND", message="no similar items found")
            logger.info(f"No similar items for {item.id}: {error.type}")
            return SimilarItemsResult(error=error, searched_at=self._now())

        recommendations = self.build_recommendations(item, outcome.items)
        preview = recommendations[0].online_item.image_url

        if self.store is not None:
            # load() rejects any batch holding a broken image
            storable = [r for r in recommendations if self.store.accepts(r)]
            if storable:
                await self.store.save(item.id, storable, storable[0].online_item.image_url)
            else:
                logger.info(f"Not storing suggestions for {item.id}: no usable images")

        return SimilarItemsResult(
            recommendations=recommendations,
            preview_image=preview,
            searched_at=self._now(),
            from_cache=outcome.from_cache,
        )

    async def analyze_wardrobe(
        self,
        wardrobe: List[GarmentDescriptor],
        items_to_analyze: int = config.WARDROBE_ANALYSIS_ITEMS,
        per_item: int = config.RECOMMENDATIONS_PER_ITEM,
        limit: int = config.MAX_WARDROBE_RECOMMENDATIONS,
    ) -> List[Recommendation]:
        """
        Run find_similar over the first few wardrobe items and merge the best
        matches of each into one list, highest similarity first.
        """
        combined: List[Recommendation] = []
        for item in wardrobe[:items_to_analyze]:
            try:
                result = await self.find_similar(item)
            except Exception as e:
                logger.error(f"Error analyzing wardrobe item {item.id}: {e}")
                continue
            if result.error:
                logger.warning(f"Skipping {item.id}: {result.error.message}")
                continue
            combined.extend(result.recommendations[:per_item])

        combined.sort(key=lambda rec: rec.similarity_score, reverse=True)
        return combined[:limit]
