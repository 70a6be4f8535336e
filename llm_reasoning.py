# llm_reasoning.py
"""
AI Planner: LLM reasoning layer using the OpenAI Chat Completions API in JSON mode.
Asks the model to assemble an outfit from the user's wardrobe and parses the
reply defensively into a ParseResult.

The model reply is loosely-typed text. Nothing about its shape is trusted until
parse_planner_output has validated it; any failure there is reported as
Malformed so the orchestrator can fall back to heuristic assembly.
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI
from pydantic import ValidationError

from contracts.models import Malformed, Ok, ParseResult, PlannerRequest, PlannerResponse, SuggestedItem
from deterministic_layer import SLOT_SYNONYMS, pack_context
from infra.logging import log_event
import config

logger = logging.getLogger(__name__)

SYSTEM_MD = """# You are StyleMuse – a Personal Stylist Working From the User's Closet

## Your Mission
Assemble ONE complete outfit around the item the user selected, using only
pieces they already own. Consider:
- The occasion, location, weather and time of day
- The user's style goal and style profile (when provided)
- Color harmony, fabric weight and formality

## Rules (MUST FOLLOW)
1. **The seed item is fixed** - keep it in its slot, never replace it
2. **Use exact wardrobe titles** - reference items by their `title`, verbatim
3. **Never invent wardrobe items** - leave a slot `null` if nothing fits
4. **One item per slot** - never reuse an item in two slots
5. Slots: {slots}

## Suggested Purchases (optional)
If the outfit would clearly benefit from something the user does not own,
list up to 3 `suggested_items` with a searchable title, category, color,
material, style, fit, reasoning, search_terms and an estimated_price in USD.

## Output Contract
Return ONLY a JSON object:
```json
{{
  "outfit": {{"top": "<title or null>", "bottom": "...", "shoes": "...", "jacket": "...", "hat": "...", "accessories": "..."}},
  "reasoning": "<one or two sentences>",
  "confidence": <0-100>,
  "suggested_items": []
}}
```
"""

_FENCE_RE = re.compile(r"```[a-zA-Z]*")


# ============================================================================
# Response parsing
# ============================================================================

def strip_wrapping(text: str) -> str:
    """
    Remove markdown fences and any prose around the outermost JSON object.
    """
    text = _FENCE_RE.sub("", text)
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end < start:
        return text.strip()
    return text[start:end + 1]


def _slot_value(value: Any) -> Optional[str]:
    # Models sometimes return {"title": ...} instead of a bare title
    if isinstance(value, dict):
        value = value.get("title") or value.get("name")
    if isinstance(value, str) and value.strip() and value.strip().lower() not in ("null", "none"):
        return value.strip()
    return None


def normalize_outfit(outfit: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """Map slot-key synonyms onto the fixed slots; unknown keys are dropped."""
    normalized: Dict[str, Optional[str]] = {}
    for key, value in outfit.items():
        slot = SLOT_SYNONYMS.get(str(key).strip().lower())
        if slot is None:
            continue
        title = _slot_value(value)
        if title or slot not in normalized:
            normalized[slot] = title
    return normalized


def _suggestions(raw: Any) -> List[SuggestedItem]:
    if not isinstance(raw, list):
        return []
    items = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        try:
            items.append(SuggestedItem.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Dropping invalid suggested item: {e.error_count()} errors")
    return items


def parse_planner_output(text: Optional[str]) -> ParseResult:
    """
    Parse raw planner text into Ok(PlannerResponse) or Malformed.

    Only the ``outfit`` mapping is required. Missing reasoning, confidence or
    suggestions fall back to model defaults.
    """
    if not text or not text.strip():
        return Malformed(raw_text=text or "", reason="empty response")

    try:
        data = json.loads(strip_wrapping(text))
    except json.JSONDecodeError as e:
        return Malformed(raw_text=text, reason=f"invalid JSON: {e.msg}")

    if not isinstance(data, dict):
        return Malformed(raw_text=text, reason="response is not an object")
    if not isinstance(data.get("outfit"), dict):
        return Malformed(raw_text=text, reason="missing outfit mapping")

    try:
        response = PlannerResponse(
            outfit=normalize_outfit(data["outfit"]),
            reasoning=data.get("reasoning") if isinstance(data.get("reasoning"), str) else None,
            confidence=data.get("confidence"),
            suggested_items=_suggestions(data.get("suggested_items")),
        )
    except ValidationError as e:
        return Malformed(raw_text=text, reason=str(e))

    return Ok[PlannerResponse](value=response)


# ============================================================================
# Planner
# ============================================================================

class OpenAIOutfitPlanner:
    """
    AI Planner backed by OpenAI chat completions.
    """

    def __init__(
        self,
        api_key: str = config.OPENAI_API_KEY,
        model: str = config.OPENAI_PLANNER_MODEL,
        timeout: float = config.PLANNER_TIMEOUT,
        temperature: float = config.PLANNER_TEMPERATURE,
        client: Optional[AsyncOpenAI] = None,
    ):
        """
        Args:
            api_key: OpenAI API key
            model: Chat model name
            timeout: Request timeout in seconds
            temperature: Sampling temperature
            client: Pre-built client (tests inject a fake)
        """
        self.model = model
        self.temperature = temperature
        self.client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    async def plan(self, request: PlannerRequest) -> str:
        """
        Ask the model for an outfit.

        Returns:
            Raw reply text (unparsed)

        Raises:
            openai.OpenAIError: On API or timeout failure
        """
        context_pack = pack_context(request)

        user_md = f"""# Session Context

```json
{json.dumps(context_pack, ensure_ascii=False, indent=2)}
```

## Your Task
Build the outfit around `seed_item`. Return ONLY the JSON object described above.
"""

        resp = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_MD.format(slots=", ".join(config.OUTFIT_SLOTS))},
                {"role": "user", "content": user_md},
            ],
            response_format={"type": "json_object"},
            temperature=self.temperature,
        )

        content = resp.choices[0].message.content or ""
        log_event("planner_reply", model=self.model, context_hash=context_pack["_hash"], chars=len(content))
        return content
