# services/suggestion_store.py
"""
Persistent Suggestion Store

Cross-session cache of similar-item recommendation batches, keyed per wardrobe
item. Each item owns a group of three co-located keys:

    <prefix>:v<version>:batch:<item_key>    JSON list of Recommendation
    <prefix>:v<version>:ts:<item_key>       ISO-8601 save timestamp
    <prefix>:v<version>:preview:<item_key>  optional preview image URL

Bumping the schema version makes every older key unreachable; such keys are
deleted the next time the namespace is enumerated. Storage growth is bounded
by keeping at most ``max_other_items`` groups besides the item being accessed.

Read failures (bad JSON, schema mismatch, Redis errors) are logged and
reported as a miss. They never reach the caller.
"""
import json
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import ValidationError
from redis.exceptions import RedisError

import config
from contracts.models import Recommendation
from infra.cache import KeyValueStore
from infra.logging import log_event, log_error

logger = logging.getLogger(__name__)

KEY_KINDS = ("batch", "ts", "preview")


def is_placeholder_image(url: Optional[str], blocklist: List[str]) -> bool:
    """
    True when an image reference is unusable: null, blank, or hosted on a
    known placeholder domain (including its subdomains).
    """
    if not url or not url.strip():
        return True
    host = (urlparse(url.strip()).hostname or "").lower()
    return any(host == domain or host.endswith("." + domain) for domain in blocklist)


class PersistentSuggestionStore:
    """
    Versioned, bounded store of recommendation batches over a KeyValueStore.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        prefix: str = config.SUGGESTION_STORE_PREFIX,
        version: int = config.SUGGESTION_SCHEMA_VERSION,
        ttl: float = config.SUGGESTION_TTL,
        max_other_items: int = config.SUGGESTION_MAX_OTHER_ITEMS,
        blocklist: Optional[List[str]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            kv: Backing key-value store (Redis or in-process)
            prefix: Namespace prefix shared by every key
            version: Schema version embedded in keys
            ttl: Batch freshness window, seconds
            max_other_items: Item groups retained besides the one being accessed
            blocklist: Placeholder image domains that invalidate a batch
            clock: Returns current time in epoch seconds
        """
        self.kv = kv
        self.prefix = prefix
        self.version = version
        self.ttl = ttl
        self.max_other_items = max_other_items
        self.blocklist = [d.lower() for d in (config.PLACEHOLDER_IMAGE_DOMAINS if blocklist is None else blocklist)]
        self._clock = clock

    # ========================================================================
    # Key helpers
    # ========================================================================

    @property
    def namespace(self) -> str:
        return f"{self.prefix}:v{self.version}:"

    def key(self, kind: str, item_key: str) -> str:
        return f"{self.namespace}{kind}:{item_key}"

    def _group_keys(self, item_key: str) -> List[str]:
        return [self.key(kind, item_key) for kind in KEY_KINDS]

    def _item_of(self, key: str) -> Optional[str]:
        """Item key for a current-version key, None for anything else."""
        if not key.startswith(self.namespace):
            return None
        kind, _, item_key = key[len(self.namespace):].partition(":")
        if kind not in KEY_KINDS or not item_key:
            return None
        return item_key

    def _parse_timestamp(self, raw: Optional[str]) -> Optional[float]:
        if not raw:
            return None
        try:
            stamp = datetime.fromisoformat(raw)
        except ValueError:
            return None
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        return stamp.timestamp()

    # ========================================================================
    # Public API
    # ========================================================================

    def accepts(self, recommendation: Recommendation) -> bool:
        """Whether a recommendation would survive ``load`` (real image reference)."""
        return not is_placeholder_image(recommendation.online_item.image_url, self.blocklist)

    async def load(self, item_key: str) -> Optional[List[Recommendation]]:
        """
        Load the stored batch for an item.

        Returns:
            The recommendations, or None on miss (absent, expired, empty,
            unreadable, or containing a broken image reference)
        """
        try:
            await self._enforce_bound(item_key)

            raw_batch = await self.kv.get(self.key("batch", item_key))
            raw_ts = await self.kv.get(self.key("ts", item_key))
        except RedisError as e:
            log_error(str(e), operation="suggestion_store.load", item_key=item_key)
            return None

        if raw_batch is None or raw_ts is None:
            return None

        saved_at = self._parse_timestamp(raw_ts)
        if saved_at is None or self._clock() - saved_at >= self.ttl:
            logger.debug(f"Stored suggestions for {item_key} expired")
            return None

        try:
            data = json.loads(raw_batch)
            if not isinstance(data, list):
                raise ValueError("stored batch is not a list")
            batch = [Recommendation.model_validate(entry) for entry in data]
        except (ValueError, ValidationError) as e:
            logger.warning(f"Discarding unreadable suggestions for {item_key}: {e}")
            return None

        if not batch:
            return None

        broken = [r.online_item.id for r in batch if is_placeholder_image(r.online_item.image_url, self.blocklist)]
        if broken:
            logger.info(f"Rejecting stored suggestions for {item_key}: broken images on {broken}")
            return None

        return batch

    async def load_preview(self, item_key: str) -> Optional[str]:
        """Stored preview image reference, if any."""
        try:
            return await self.kv.get(self.key("preview", item_key))
        except RedisError as e:
            log_error(str(e), operation="suggestion_store.load_preview", item_key=item_key)
            return None

    async def load_timestamp(self, item_key: str) -> Optional[datetime]:
        """Time the batch was saved, if readable."""
        try:
            raw = await self.kv.get(self.key("ts", item_key))
        except RedisError as e:
            log_error(str(e), operation="suggestion_store.load_timestamp", item_key=item_key)
            return None
        saved_at = self._parse_timestamp(raw)
        return datetime.fromtimestamp(saved_at, tz=timezone.utc) if saved_at is not None else None

    async def save(
        self,
        item_key: str,
        recommendations: List[Recommendation],
        preview: Optional[str] = None,
    ) -> None:
        """
        Write the batch, timestamp and optional preview for an item, then
        trim the namespace back to its bound.
        """
        batch = json.dumps([r.model_dump(mode="json") for r in recommendations])
        stamp = datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat()

        try:
            await self.kv.set(self.key("batch", item_key), batch)
            await self.kv.set(self.key("ts", item_key), stamp)
            if preview:
                await self.kv.set(self.key("preview", item_key), preview)
            else:
                await self.kv.delete(self.key("preview", item_key))
            await self._enforce_bound(item_key)
        except RedisError as e:
            log_error(str(e), operation="suggestion_store.save", item_key=item_key)
            return

        logger.debug(f"Saved {len(recommendations)} suggestions for {item_key}")

    async def evict_stale(self, item_key: str) -> None:
        """Delete the item's group when it would not load as a hit."""
        if await self.load(item_key) is not None:
            return
        try:
            await self.kv.delete(*self._group_keys(item_key))
        except RedisError as e:
            log_error(str(e), operation="suggestion_store.evict_stale", item_key=item_key)

    async def clear(self, item_key: str) -> None:
        """Delete the item's group unconditionally."""
        try:
            await self.kv.delete(*self._group_keys(item_key))
        except RedisError as e:
            log_error(str(e), operation="suggestion_store.clear", item_key=item_key)

    # ========================================================================
    # Housekeeping
    # ========================================================================

    async def _enforce_bound(self, current_item: str) -> None:
        """
        Drop other-version keys and keep at most ``max_other_items`` item
        groups besides ``current_item``, deleting the oldest first.
        """
        all_keys = await self.kv.keys(f"{self.prefix}:*")

        outdated = [k for k in all_keys if not k.startswith(self.namespace)]
        if outdated:
            await self.kv.delete(*outdated)
            log_event("suggestion_store_version_purge", deleted=len(outdated), version=self.version)

        groups: Dict[str, List[str]] = {}
        for key in all_keys:
            item_key = self._item_of(key)
            if item_key is not None and item_key != current_item:
                groups.setdefault(item_key, []).append(key)

        excess = len(groups) - self.max_other_items
        if excess <= 0:
            return

        ages = {}
        for item_key in groups:
            saved_at = self._parse_timestamp(await self.kv.get(self.key("ts", item_key)))
            # Unreadable timestamps sort first
            ages[item_key] = saved_at if saved_at is not None else float("-inf")

        victims = sorted(groups, key=lambda k: (ages[k], k))[:excess]
        await self.kv.delete(*[key for item_key in victims for key in groups[item_key]])
        log_event("suggestion_store_evicted", evicted=victims, kept=self.max_other_items)
