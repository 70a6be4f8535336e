# services/outfit_composer.py
"""
Outfit Assembly Orchestrator for StyleMuse.

Builds one outfit around a seed wardrobe item. Each invocation is a small
state machine:

    IDLE -> PLANNING -> AI_DELEGATED -> RESOLVED -> DONE
    IDLE -> PLANNING -> AI_DELEGATED -> FALLBACK -> DONE

- The seed is placed in its slot first and never displaced.
- The AI Planner is tried first. Its by-title picks are resolved against the
  wardrobe by exact title; unresolved picks leave the slot empty.
- Any planner failure (exception, timeout, malformed reply, no planner) goes
  to FALLBACK, which fills each empty slot with the best-scoring wardrobe
  item for that slot. Ties are broken by a bounded random perturbation.
- Single-flight per seed item: a second request for a seed already in flight
  is rejected with BUSY, never queued.

AI failures are never raised to the caller.
"""
import asyncio
import logging
import random
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Set

import config
from contracts.models import (
    OUTFIT_SLOTS,
    AssemblyResult,
    GarmentDescriptor,
    Malformed,
    Ok,
    Outfit,
    OutfitContext,
    ParseResult,
    PlannerRequest,
    ServiceError,
    SuggestedItem,
)
from deterministic_layer import build_planner_request, categorize_item
from infra.logging import log_event
from llm_reasoning import parse_planner_output
from services.compatibility_scorer import score

logger = logging.getLogger(__name__)

Categorizer = Callable[[GarmentDescriptor], str]


class Planner(Protocol):
    def plan(self, request: PlannerRequest) -> Awaitable[str]: ...


class ImageGenerator(Protocol):
    def generate(self, item: SuggestedItem) -> Awaitable[Optional[str]]: ...


class AssemblyState(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    AI_DELEGATED = "ai_delegated"
    RESOLVED = "resolved"
    FALLBACK = "fallback"
    DONE = "done"


# Allowed transitions
TRANSITIONS = {
    AssemblyState.IDLE: {AssemblyState.PLANNING},
    AssemblyState.PLANNING: {AssemblyState.AI_DELEGATED},
    AssemblyState.AI_DELEGATED: {AssemblyState.RESOLVED, AssemblyState.FALLBACK},
    AssemblyState.RESOLVED: {AssemblyState.DONE},
    AssemblyState.FALLBACK: {AssemblyState.DONE},
    AssemblyState.DONE: set(),
}


class AssemblyRun:
    """State of one assemble() invocation."""

    def __init__(self, seed: GarmentDescriptor, seed_slot: str):
        self.seed = seed
        self.seed_slot = seed_slot
        self.state = AssemblyState.IDLE
        self.history: List[str] = [self.state.value]
        self.slots: Dict[str, Optional[str]] = {slot: None for slot in OUTFIT_SLOTS}
        self.slots[seed_slot] = seed.id

    def transition(self, new_state: AssemblyState):
        if new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal assembly transition {self.state.value} -> {new_state.value}")
        logger.debug(f"[{self.seed.id}] {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state.value)


class OutfitComposer:
    """
    Assembles outfits from a wardrobe, AI first with heuristic fallback.
    """

    def __init__(
        self,
        planner: Optional[Planner] = None,
        image_generator: Optional[ImageGenerator] = None,
        categorize: Categorizer = categorize_item,
        rng: Optional[random.Random] = None,
        jitter: float = config.FALLBACK_TIE_BREAK_JITTER,
        planner_timeout: Optional[float] = config.PLANNER_TIMEOUT,
        max_suggestion_images: int = config.MAX_SUGGESTED_ITEM_IMAGES,
    ):
        """
        Args:
            planner: AI Planner; None means always fall back
            image_generator: Optional image synthesis for suggested items
            categorize: Wardrobe categorization (item -> slot)
            rng: Random source for fallback tie-breaking
            jitter: Upper bound of the tie-break perturbation (score points)
            planner_timeout: Seconds before a planner call counts as failed
            max_suggestion_images: Suggestions that receive a generated image
        """
        self.planner = planner
        self.image_generator = image_generator
        self.categorize = categorize
        self.rng = rng or random.Random()
        self.jitter = jitter
        self.planner_timeout = planner_timeout
        self.max_suggestion_images = max_suggestion_images
        self._in_flight: Set[str] = set()

    def is_in_flight(self, seed_id: str) -> bool:
        return seed_id in self._in_flight

    def slot_of(self, item: GarmentDescriptor) -> Optional[str]:
        slot = self.categorize(item)
        return slot if slot in OUTFIT_SLOTS else None

    # ========================================================================
    # Entry point
    # ========================================================================

    async def assemble(
        self,
        seed: GarmentDescriptor,
        wardrobe: List[GarmentDescriptor],
        context: Optional[OutfitContext] = None,
        style_profile: Optional[Dict] = None,
    ) -> AssemblyResult:
        """
        Assemble one outfit around ``seed``.

        Args:
            seed: Selected wardrobe item, always kept in its slot
            wardrobe: Full wardrobe (may include the seed)
            context: Occasion / location / weather / time / style goal
            style_profile: Optional style-profile data passed to the planner

        Returns:
            AssemblyResult; path "rejected" with a BUSY error when an assembly
            for the same seed is already running
        """
        seed_slot = self.slot_of(seed) or "accessories"

        if seed.id in self._in_flight:
            log_event("assembly_busy", seed_id=seed.id)
            outfit = Outfit(**{seed_slot: seed.id})
            return AssemblyResult(
                outfit=outfit,
                reasoning="An outfit is already being assembled for this item",
                filled_count=1,
                empty_count=len(OUTFIT_SLOTS) - 1,
                path="rejected",
                error=ServiceError(type="BUSY", message=f"Assembly already in progress for {seed.id}"),
            )

        self._in_flight.add(seed.id)
        try:
            return await self._run(AssemblyRun(seed, seed_slot), wardrobe, context or OutfitContext(), style_profile)
        finally:
            self._in_flight.discard(seed.id)

    async def _run(
        self,
        run: AssemblyRun,
        wardrobe: List[GarmentDescriptor],
        context: OutfitContext,
        style_profile: Optional[Dict],
    ) -> AssemblyResult:
        run.transition(AssemblyState.PLANNING)
        request = build_planner_request(wardrobe, context, style_profile, seed_item_id=run.seed.id)

        run.transition(AssemblyState.AI_DELEGATED)
        parsed = await self._delegate(request)

        suggested: List[SuggestedItem] = []
        failed = False
        if isinstance(parsed, Ok):
            run.transition(AssemblyState.RESOLVED)
            self.resolve_titles(run, parsed.value.outfit, wardrobe)
            suggested = await self._illustrate(parsed.value.suggested_items)
            reasoning = parsed.value.reasoning
            confidence = parsed.value.confidence
            path = "ai"
        else:
            logger.info(f"Planner unavailable for {run.seed.id} ({parsed.reason}), using fallback")
            run.transition(AssemblyState.FALLBACK)
            picks = self.fill_by_compatibility(run.seed, wardrobe, run.slots)
            reasoning = self._fallback_reasoning(run.seed, picks)
            confidence = sum(s for _, s, _ in picks.values()) / len(picks) if picks else None
            failed = not picks
            path = "fallback"

        run.transition(AssemblyState.DONE)

        outfit = Outfit(**run.slots)
        filled = outfit.filled_count()
        log_event(
            "outfit_assembled",
            seed_id=run.seed.id,
            path=path,
            filled=filled,
            empty=len(OUTFIT_SLOTS) - filled,
            failed=failed,
            states=run.history,
        )
        return AssemblyResult(
            outfit=outfit,
            reasoning=reasoning,
            filled_count=filled,
            empty_count=len(OUTFIT_SLOTS) - filled,
            path=path,
            confidence=confidence,
            suggested_items=suggested,
            failed=failed,
            states=list(run.history),
        )

    # ========================================================================
    # AI path
    # ========================================================================

    async def _delegate(self, request: PlannerRequest) -> ParseResult:
        """Call the planner; every failure becomes Malformed."""
        if self.planner is None:
            return Malformed(raw_text="", reason="no planner configured")
        try:
            if self.planner_timeout:
                text = await asyncio.wait_for(self.planner.plan(request), timeout=self.planner_timeout)
            else:
                text = await self.planner.plan(request)
        except asyncio.TimeoutError:
            logger.warning(f"Planner timed out after {self.planner_timeout}s")
            return Malformed(raw_text="", reason="timeout")
        except Exception as e:
            logger.warning(f"Planner call failed: {e}")
            return Malformed(raw_text="", reason=f"{type(e).__name__}: {e}")

        parsed = parse_planner_output(text)
        if isinstance(parsed, Malformed):
            logger.warning(f"Planner reply unusable: {parsed.reason}")
        return parsed

    def resolve_titles(
        self,
        run: AssemblyRun,
        planned: Dict[str, Optional[str]],
        wardrobe: List[GarmentDescriptor],
    ) -> None:
        """
        Fill non-seed slots from the planner's picks by exact title match.
        An item already placed (including the seed) is never placed twice.
        """
        for slot in OUTFIT_SLOTS:
            if slot == run.seed_slot:
                continue
            title = planned.get(slot)
            if not title:
                continue
            taken = set(run.slots.values())
            match = next(
                (w for w in wardrobe
                 if w.title is not None and w.title.strip() == title.strip()
                 and w.id != run.seed.id and w.id not in taken),
                None,
            )
            if match is None:
                logger.debug(f"Planner pick '{title}' for {slot} not found in wardrobe")
                continue
            run.slots[slot] = match.id

    async def _illustrate(self, suggestions: List[SuggestedItem]) -> List[SuggestedItem]:
        """Attach generated images to the first few suggestions; failures leave no image."""
        if not suggestions or self.image_generator is None or self.max_suggestion_images <= 0:
            return list(suggestions)

        head = suggestions[:self.max_suggestion_images]
        results = await asyncio.gather(
            *(self.image_generator.generate(item) for item in head),
            return_exceptions=True,
        )

        illustrated = []
        for item, result in zip(head, results):
            if isinstance(result, BaseException):
                logger.warning(f"Image generation failed for '{item.title}': {result}")
                illustrated.append(item)
            else:
                illustrated.append(item.model_copy(update={"image_url": result}))
        return illustrated + list(suggestions[self.max_suggestion_images:])

    # ========================================================================
    # Fallback path
    # ========================================================================

    def fill_by_compatibility(
        self,
        seed: GarmentDescriptor,
        wardrobe: List[GarmentDescriptor],
        slots: Dict[str, Optional[str]],
    ) -> Dict[str, tuple]:
        """
        Fill every empty slot with the wardrobe item that scores best against
        the seed. Mutates ``slots`` in place.

        Returns:
            slot -> (item, score, reasoning) for each slot filled here
        """
        taken = {item_id for item_id in slots.values() if item_id}
        by_slot: Dict[str, List[GarmentDescriptor]] = {}
        for item in wardrobe:
            if item.id == seed.id or item.id in taken:
                continue
            slot = self.slot_of(item)
            if slot is not None:
                by_slot.setdefault(slot, []).append(item)

        picks: Dict[str, tuple] = {}
        for slot in OUTFIT_SLOTS:
            if slots.get(slot):
                continue
            candidates = [c for c in by_slot.get(slot, []) if c.id not in taken]
            if not candidates:
                continue

            best = None
            for candidate in candidates:
                value, why = score(seed, candidate)
                ranked = value + self.rng.uniform(0, self.jitter)
                if best is None or ranked > best[0]:
                    best = (ranked, candidate, value, why)

            _, item, value, why = best
            slots[slot] = item.id
            taken.add(item.id)
            picks[slot] = (item, value, why)
        return picks

    def _fallback_reasoning(self, seed: GarmentDescriptor, picks: Dict[str, tuple]) -> str:
        name = seed.title or "selected item"
        if not picks:
            return f"No compatible wardrobe items found to pair with your {name}"
        details = "; ".join(f"{slot}: {item.title or item.id} ({why})" for slot, (item, _, why) in picks.items())
        return f"Built around your {name} by style compatibility. {details}"
