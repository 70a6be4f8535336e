"""
Tests for the outfit assembly orchestrator: AI path, fallback path,
single-flight and suggested-item images.
"""
import asyncio
import json
import random

import pytest

from contracts.models import GarmentDescriptor, OutfitContext, SuggestedItem
from services.outfit_composer import AssemblyRun, AssemblyState, OutfitComposer


class ScriptedPlanner:
    def __init__(self, reply=None, error=None, delay=0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.requests = []

    async def plan(self, request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.reply


class GatedPlanner:
    """Blocks until released so a second request can arrive mid-flight."""

    def __init__(self):
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def plan(self, request):
        self.entered.set()
        await self.release.wait()
        return "not json"


class FlakyImages:
    def __init__(self, fail_titles=()):
        self.fail_titles = set(fail_titles)
        self.calls = []

    async def generate(self, item):
        self.calls.append(item.title)
        if item.title in self.fail_titles:
            raise RuntimeError("image backend down")
        return f"https://images.test/{item.title.replace(' ', '-')}.png"


def reply(outfit, **extra) -> str:
    return json.dumps({"outfit": outfit, **extra})


@pytest.fixture
def sneakers():
    return GarmentDescriptor(id="w-sneakers", title="White leather sneakers", color="white", category="shoes")


@pytest.fixture
def boots():
    return GarmentDescriptor(id="w-boots", title="Brown suede boots", color="brown", category="shoes")


# ============================================================================
# Fallback path
# ============================================================================

@pytest.mark.asyncio
async def test_fallback_fills_only_slot_with_candidates(blue_shirt, denim_jeans, seeded_rng):
    composer = OutfitComposer(planner=None, rng=seeded_rng)

    result = await composer.assemble(blue_shirt, [blue_shirt, denim_jeans], OutfitContext(occasion="brunch"))

    assert result.path == "fallback"
    assert result.outfit.top == "w-shirt"
    assert result.outfit.bottom == "w-jeans"
    assert result.outfit.shoes is None
    assert result.outfit.jacket is None
    assert result.outfit.hat is None
    assert result.outfit.accessories is None
    assert result.filled_count == 2
    assert result.empty_count == 4
    assert not result.failed
    assert result.states == ["idle", "planning", "ai_delegated", "fallback", "done"]


@pytest.mark.asyncio
async def test_planner_exception_falls_back(blue_shirt, denim_jeans):
    planner = ScriptedPlanner(error=ConnectionError("upstream reset"))
    composer = OutfitComposer(planner=planner, rng=random.Random(1))

    result = await composer.assemble(blue_shirt, [blue_shirt, denim_jeans])

    assert result.path == "fallback"
    assert result.outfit.bottom == "w-jeans"
    assert result.error is None


@pytest.mark.asyncio
async def test_planner_timeout_falls_back(blue_shirt, denim_jeans):
    planner = ScriptedPlanner(reply=reply({"bottom": "dark denim jeans"}), delay=1.0)
    composer = OutfitComposer(planner=planner, planner_timeout=0.01)

    result = await composer.assemble(blue_shirt, [blue_shirt, denim_jeans])

    assert result.path == "fallback"


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["Sorry, I can't help with that.", "", '{"reasoning": "no outfit key"}', "[1, 2]"])
async def test_malformed_reply_falls_back(blue_shirt, denim_jeans, text):
    composer = OutfitComposer(planner=ScriptedPlanner(reply=text))

    result = await composer.assemble(blue_shirt, [blue_shirt, denim_jeans])

    assert result.path == "fallback"
    assert result.outfit.bottom == "w-jeans"


@pytest.mark.asyncio
async def test_fallback_with_no_candidates_reports_failure(blue_shirt):
    composer = OutfitComposer()

    result = await composer.assemble(blue_shirt, [blue_shirt])

    assert result.failed
    assert result.outfit.top == "w-shirt"
    assert result.filled_count == 1
    assert result.user_message() == "outfit generation failed, please retry"


def test_fill_by_compatibility_prefers_higher_score(blue_shirt, sneakers, boots):
    composer = OutfitComposer(rng=random.Random(0), jitter=0.0)
    seed = blue_shirt.model_copy(update={"color": "white"})
    slots = {"top": seed.id, "bottom": None, "shoes": None, "jacket": None, "hat": None, "accessories": None}

    picks = composer.fill_by_compatibility(seed, [boots, sneakers], slots)

    assert slots["shoes"] == "w-sneakers"
    assert set(picks) == {"shoes"}


def test_tie_break_is_bounded_and_reproducible(blue_shirt):
    twins = [GarmentDescriptor(id=f"w-belt-{i}", title="leather belt", category="accessories") for i in range(4)]

    def pick(seed_value):
        composer = OutfitComposer(rng=random.Random(seed_value), jitter=1.0)
        slots = {"top": blue_shirt.id, "bottom": None, "shoes": None, "jacket": None, "hat": None, "accessories": None}
        composer.fill_by_compatibility(blue_shirt, twins, slots)
        return slots["accessories"]

    assert pick(3) == pick(3)
    assert {pick(s) for s in range(40)} <= {t.id for t in twins}
    assert len({pick(s) for s in range(40)}) > 1


def test_fill_by_compatibility_never_reuses_an_item(blue_shirt, denim_jeans, sneakers):
    composer = OutfitComposer(rng=random.Random(5))
    slots = {"top": blue_shirt.id, "bottom": "w-jeans", "shoes": None, "jacket": None, "hat": None, "accessories": None}

    composer.fill_by_compatibility(blue_shirt, [blue_shirt, denim_jeans, sneakers], slots)

    assigned = [v for v in slots.values() if v]
    assert len(assigned) == len(set(assigned))
    assert slots["shoes"] == "w-sneakers"


# ============================================================================
# AI path
# ============================================================================

@pytest.mark.asyncio
async def test_ai_picks_resolved_by_exact_title(blue_shirt, denim_jeans, sneakers):
    text = "```json\n" + reply(
        {"Tops": "Some other shirt", "bottoms": "dark denim jeans", "footwear": "Black chelsea boots", "hat": None},
        reasoning="Denim and a crisp shirt for brunch",
        confidence=82,
    ) + "\n```"
    planner = ScriptedPlanner(reply=text)
    composer = OutfitComposer(planner=planner)

    result = await composer.assemble(blue_shirt, [blue_shirt, denim_jeans, sneakers], OutfitContext(weather="mild"))

    assert result.path == "ai"
    assert result.outfit.top == "w-shirt"
    assert result.outfit.bottom == "w-jeans"
    assert result.outfit.shoes is None
    assert result.filled_count == 2
    assert result.reasoning == "Denim and a crisp shirt for brunch"
    assert result.confidence == 82
    assert result.states == ["idle", "planning", "ai_delegated", "resolved", "done"]
    assert planner.requests[0].seed_item_id == "w-shirt"
    assert planner.requests[0].context.weather == "mild"


@pytest.mark.asyncio
async def test_partial_ai_reply_uses_defaults(blue_shirt, denim_jeans):
    composer = OutfitComposer(planner=ScriptedPlanner(reply=reply({"bottom": "dark denim jeans"})))

    result = await composer.assemble(blue_shirt, [blue_shirt, denim_jeans])

    assert result.path == "ai"
    assert result.reasoning == "AI-curated outfit"
    assert result.confidence == 0
    assert result.suggested_items == []


@pytest.mark.asyncio
async def test_ai_cannot_displace_seed_or_reuse_items(blue_shirt, denim_jeans):
    text = reply({"top": "dark denim jeans", "bottom": "dark denim jeans", "accessories": "blue cotton shirt"})
    composer = OutfitComposer(planner=ScriptedPlanner(reply=text))

    result = await composer.assemble(blue_shirt, [blue_shirt, denim_jeans])

    assert result.outfit.top == "w-shirt"
    assert result.outfit.bottom == "w-jeans"
    assert result.outfit.accessories is None
    assigned = result.outfit.assigned_ids()
    assert len(assigned) == len(set(assigned))


@pytest.mark.asyncio
async def test_suggested_item_images_are_best_effort(blue_shirt, denim_jeans):
    suggestions = [{"title": f"Suggestion {i}", "category": "shoes"} for i in range(4)]
    images = FlakyImages(fail_titles={"Suggestion 1"})
    composer = OutfitComposer(
        planner=ScriptedPlanner(reply=reply({"bottom": "dark denim jeans"}, suggested_items=suggestions)),
        image_generator=images,
    )

    result = await composer.assemble(blue_shirt, [blue_shirt, denim_jeans])

    assert result.path == "ai"
    assert [s.title for s in result.suggested_items] == [f"Suggestion {i}" for i in range(4)]
    assert images.calls == ["Suggestion 0", "Suggestion 1", "Suggestion 2"]
    assert result.suggested_items[0].image_url == "https://images.test/Suggestion-0.png"
    assert result.suggested_items[1].image_url is None
    assert result.suggested_items[3].image_url is None


# ============================================================================
# Single-flight
# ============================================================================

@pytest.mark.asyncio
async def test_second_request_for_same_seed_is_rejected(blue_shirt, denim_jeans):
    planner = GatedPlanner()
    composer = OutfitComposer(planner=planner)

    first = asyncio.create_task(composer.assemble(blue_shirt, [blue_shirt, denim_jeans]))
    await planner.entered.wait()

    busy = await composer.assemble(blue_shirt, [blue_shirt, denim_jeans])

    assert busy.path == "rejected"
    assert busy.error.type == "BUSY"
    assert busy.outfit.top == "w-shirt"
    assert busy.filled_count == 1
    assert busy.user_message() == "outfit generation failed, please retry"

    planner.release.set()
    done = await first
    assert done.path == "fallback"
    assert not composer.is_in_flight("w-shirt")


@pytest.mark.asyncio
async def test_other_seeds_run_concurrently(blue_shirt, denim_jeans):
    planner = GatedPlanner()
    composer = OutfitComposer(planner=planner)

    first = asyncio.create_task(composer.assemble(blue_shirt, [blue_shirt, denim_jeans]))
    await planner.entered.wait()
    second = asyncio.create_task(composer.assemble(denim_jeans, [blue_shirt, denim_jeans]))
    await asyncio.sleep(0)
    planner.release.set()

    results = await asyncio.gather(first, second)

    assert [r.path for r in results] == ["fallback", "fallback"]


def test_illegal_transition_raises(blue_shirt):
    run = AssemblyRun(blue_shirt, "top")
    with pytest.raises(RuntimeError):
        run.transition(AssemblyState.DONE)


def test_suggested_item_defaults():
    item = SuggestedItem(title="Tan trench coat")
    assert item.image_url is None and item.search_terms == []
