# integrations/affiliate_manager.py
"""
Affiliate link generation and conversion tracking for marketplace items.

Links carry the configured associate tag. Conversion tracking only emits a
structured event; forwarding to an analytics backend is left to log shipping.
"""
from typing import Literal, Optional
from urllib.parse import quote, urlencode

import config
from infra.logging import log_event

ConversionAction = Literal["click", "purchase"]


def generate_affiliate_link(item_id: str, associate_tag: Optional[str] = None) -> str:
    """
    Build the canonical affiliate detail URL for a marketplace item.

    Args:
        item_id: Marketplace item identifier (ASIN)
        associate_tag: Override for the configured associate tag

    Returns:
        URL of the form ``https://amazon.com/dp/<id>?tag=<tag>``
    """
    tag = associate_tag or config.AFFILIATE_ASSOCIATE_TAG
    return f"{config.AFFILIATE_BASE_URL}/{quote(item_id, safe='')}?{urlencode({'tag': tag})}"


def track_conversion(item_id: str, action: ConversionAction, **fields) -> None:
    """
    Record a click or purchase for an affiliate item.

    Raises:
        ValueError: If action is not "click" or "purchase"
    """
    if action not in ("click", "purchase"):
        raise ValueError(f"Unsupported conversion action: {action!r}")
    log_event("affiliate_conversion", item_id=item_id, action=action, merchant="amazon", **fields)
