# contracts/models.py
"""
Pydantic models for the StyleMuse recommendation engine.
These models define the data contracts for wardrobe items, marketplace results,
recommendations, outfits and AI planner responses.
"""
from datetime import datetime
from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

T = TypeVar("T")

OutfitSlot = Literal["top", "bottom", "shoes", "jacket", "hat", "accessories"]
OUTFIT_SLOTS: List[str] = ["top", "bottom", "shoes", "jacket", "hat", "accessories"]

ErrorType = Literal["RATE_LIMITED", "NETWORK_ERROR", "INVALID_RESPONSE", "NOT_FOUND", "BUSY"]


class GarmentDescriptor(BaseModel):
    """
    Category-agnostic garment attributes shared by wardrobe items and
    marketplace items. Owned by the wardrobe; this engine never mutates them.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    title: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    material: Optional[str] = None
    style: Optional[str] = None
    fit: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = []
    image: Optional[str] = None

    @property
    def colors(self) -> List[str]:
        """Color set, splitting compound entries like "navy/white"."""
        if not self.color:
            return []
        parts = self.color.replace("/", ",").replace("&", ",").replace(" and ", ",").split(",")
        return [p.strip() for p in parts if p.strip()]


class MarketplaceItem(BaseModel):
    """
    Normalized external-search result. Raw provider payloads are translated
    into this shape once, at the search-client boundary.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    image_url: Optional[str] = None
    price: float = 0.0
    currency: str = "USD"
    rating: float = Field(default=0.0, ge=0, le=5)
    review_count: int = 0
    detail_url: str = ""
    features: List[str] = []


class Recommendation(BaseModel):
    """
    A wardrobe item paired with one marketplace item and a similarity score.
    Immutable: a new search produces a new batch.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    type: Literal["similar", "complement", "upgrade", "trend"] = "similar"
    wardrobe_context: GarmentDescriptor
    online_item: MarketplaceItem
    similarity_score: float = Field(ge=0, le=100)
    reasoning: str
    confidence_level: float = Field(default=0.0, ge=0, le=100)
    generated_at: datetime


class CacheEntry(BaseModel, Generic[T]):
    """Cached value with creation time and TTL (seconds)."""
    data: T
    created_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.created_at < self.ttl


class RateLimiterState(BaseModel):
    """
    Process-wide limiter bookkeeping. Times are epoch seconds.
    """
    last_call_at: Optional[float] = None
    hourly_count: int = 0
    hourly_window_started_at: float = 0.0


class ServiceError(BaseModel):
    """
    Typed error surfaced to callers instead of raising.
    """
    type: ErrorType
    message: str
    retry_after_ms: Optional[int] = None
    merchant: Optional[str] = None

    def user_message(self) -> str:
        """Short text suitable for display."""
        if self.type == "RATE_LIMITED":
            seconds = max(1, -(-(self.retry_after_ms or 0) // 1000))
            return f"rate limited, try again in {seconds}s"
        if self.type in ("NOT_FOUND", "NETWORK_ERROR", "INVALID_RESPONSE"):
            return "no similar items found"
        return "outfit generation failed, please retry"


class RateLimitDecision(BaseModel):
    """Result of RateLimiter.try_acquire: allowed, or denied with a retry hint."""
    allowed: bool
    reason: Optional[ErrorType] = None
    retry_after_ms: int = 0
    message: str = ""

    def to_error(self) -> ServiceError:
        return ServiceError(
            type="RATE_LIMITED",
            message=self.message or "Rate limit: Please wait before making another request.",
            retry_after_ms=self.retry_after_ms,
        )


class SearchOutcome(BaseModel):
    """Result of a product search: items (possibly empty) and an optional error."""
    items: List[MarketplaceItem] = []
    error: Optional[ServiceError] = None
    from_cache: bool = False


class DetailsOutcome(BaseModel):
    """Result of a single-item lookup. ``item`` is None for NotFound."""
    item: Optional[MarketplaceItem] = None
    error: Optional[ServiceError] = None
    from_cache: bool = False


class OutfitContext(BaseModel):
    """Occasion/weather context for outfit assembly."""
    occasion: Optional[str] = None
    location: Optional[str] = None
    weather: Optional[str] = None
    time: Optional[str] = None
    style_goal: Optional[str] = None


class Outfit(BaseModel):
    """
    Mapping from every slot to a wardrobe item id, or None when empty.
    """
    top: Optional[str] = None
    bottom: Optional[str] = None
    shoes: Optional[str] = None
    jacket: Optional[str] = None
    hat: Optional[str] = None
    accessories: Optional[str] = None

    def slots(self) -> Dict[str, Optional[str]]:
        return {slot: getattr(self, slot) for slot in OUTFIT_SLOTS}

    def assigned_ids(self) -> List[str]:
        return [item_id for item_id in self.slots().values() if item_id]

    def filled_count(self) -> int:
        return len(self.assigned_ids())


class SuggestedItem(BaseModel):
    """An item the AI Planner proposes buying (not in the wardrobe)."""
    title: str
    description: str = ""
    category: Optional[str] = None
    color: Optional[str] = None
    material: Optional[str] = None
    style: Optional[str] = None
    fit: Optional[str] = None
    reasoning: str = ""
    search_terms: List[str] = []
    estimated_price: float = 0.0
    image_url: Optional[str] = None


class PlannerRequest(BaseModel):
    """Payload handed to the AI Planner."""
    wardrobe: List[GarmentDescriptor]
    context: OutfitContext
    style_profile: Optional[Dict[str, Any]] = None
    seed_item_id: Optional[str] = None


class PlannerResponse(BaseModel):
    """
    Validated AI Planner output. Only ``outfit`` is required; everything else
    falls back to defaults.
    """
    outfit: Dict[str, Optional[str]]
    reasoning: str = "AI-curated outfit"
    confidence: float = 0.0
    suggested_items: List[SuggestedItem] = []

    @field_validator("reasoning", mode="before")
    @classmethod
    def _default_reasoning(cls, value):
        return value or "AI-curated outfit"

    @field_validator("confidence", mode="before")
    @classmethod
    def _default_confidence(cls, value):
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0


class Ok(BaseModel, Generic[T]):
    """Successful parse."""
    value: T


class Malformed(BaseModel):
    """Parse failure, keeping the raw text for diagnostics."""
    raw_text: str
    reason: str = ""


ParseResult = Union[Ok[PlannerResponse], Malformed]


class AssemblyResult(BaseModel):
    """
    Terminal output of one outfit-assembly run.
    """
    outfit: Outfit
    reasoning: str
    filled_count: int
    empty_count: int
    path: Literal["ai", "fallback", "rejected"]
    confidence: Optional[float] = None
    suggested_items: List[SuggestedItem] = []
    failed: bool = False
    error: Optional[ServiceError] = None
    states: List[str] = []

    def user_message(self) -> Optional[str]:
        """Display text for a rejected or failed run, None on success."""
        if self.error is not None:
            return self.error.user_message()
        if self.failed:
            return "outfit generation failed, please retry"
        return None


class SimilarItemsResult(BaseModel):
    """Result of the find-similar pipeline for one wardrobe item."""
    recommendations: List[Recommendation] = []
    preview_image: Optional[str] = None
    searched_at: Optional[datetime] = None
    from_cache: bool = False
    error: Optional[ServiceError] = None
