# integrations/image_generator.py
"""
Image synthesis for suggested (not-owned) items via the OpenAI Images API.

Purely additive: callers treat any failure as "no image".
"""
import logging
from typing import Optional

from openai import AsyncOpenAI

import config
from contracts.models import SuggestedItem

logger = logging.getLogger(__name__)

IMAGE_SIZE = "1024x1024"


def build_image_prompt(item: SuggestedItem) -> str:
    """Product-shot prompt from the suggestion's garment attributes."""
    attributes = ", ".join(
        part for part in (item.color, item.material, item.style, item.fit) if part
    )
    prompt = f"Studio product photo of {item.title}"
    if attributes:
        prompt += f" ({attributes})"
    if item.description:
        prompt += f". {item.description}"
    return prompt + ". Plain white background, no model, no text."


class OpenAIImageGenerator:
    """
    Generates one representative image per suggested item.
    """

    def __init__(
        self,
        api_key: str = config.OPENAI_API_KEY,
        model: str = config.OPENAI_IMAGE_MODEL,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.client = client or AsyncOpenAI(api_key=api_key)

    async def generate(self, item: SuggestedItem) -> Optional[str]:
        """
        Args:
            item: Suggested item to illustrate

        Returns:
            Image URL (or data URL when the API returns base64), None if empty

        Raises:
            openai.OpenAIError: On API failure
        """
        resp = await self.client.images.generate(
            model=self.model,
            prompt=build_image_prompt(item),
            size=IMAGE_SIZE,
            n=1,
        )
        if not resp.data:
            return None
        image = resp.data[0]
        if image.url:
            return image.url
        if image.b64_json:
            return f"data:image/png;base64,{image.b64_json}"
        return None
