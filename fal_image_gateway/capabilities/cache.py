from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from fal_image_gateway.capabilities.schema import ModelCapability
from fal_image_gateway.errors import CapabilityError, SchemaShapeError
from fal_image_gateway.registry import SupportedModelRegistry

logger = logging.getLogger("uvicorn.error")

DEFAULT_CAPABILITY_TTL_SECONDS = 24 * 60 * 60


class CapabilityFetcher(Protocol):
    async def fetch(self, endpoint_id: str) -> ModelCapability: ...


@dataclass(frozen=True, slots=True)
class CachedCapability:
    capability: ModelCapability
    fetched_at: float


class CapabilityCache:
    """Per-model capability records with TTL refresh and stale fallback.

    Concurrent misses for the same model may each trigger a fetch; the
    results are interchangeable so the last writer wins.
    """

    def __init__(
        self,
        *,
        registry: SupportedModelRegistry,
        fetcher: CapabilityFetcher,
        ttl_seconds: float = DEFAULT_CAPABILITY_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._fetcher = fetcher
        self._ttl_seconds = max(0.0, float(ttl_seconds))
        self._clock = clock
        self._entries: dict[str, CachedCapability] = {}

    def peek(self, model_name: str) -> CachedCapability | None:
        return self._entries.get(model_name)

    def _is_fresh(self, entry: CachedCapability) -> bool:
        return self._clock() - entry.fetched_at < self._ttl_seconds

    async def resolve(self, model_name: str) -> ModelCapability | None:
        endpoint_id = self._registry.endpoint_for(model_name)
        if endpoint_id is None:
            return None

        cached = self._entries.get(model_name)
        if cached is not None and self._is_fresh(cached):
            logger.debug("capability_cache_hit model=%s", model_name)
            return cached.capability

        logger.debug(
            "capability_cache_miss model=%s endpoint_id=%s stale=%s",
            model_name,
            endpoint_id,
            cached is not None,
        )
        try:
            capability = await self._fetcher.fetch(endpoint_id)
        except CapabilityError as exc:
            logger.error(
                "capability_fetch_failed model=%s endpoint_id=%s kind=%s error=%s",
                model_name,
                endpoint_id,
                "schema_shape" if isinstance(exc, SchemaShapeError) else "schema_fetch",
                exc,
            )
            if cached is not None:
                logger.warning(
                    "capability_cache_stale_fallback model=%s age_seconds=%.0f",
                    model_name,
                    self._clock() - cached.fetched_at,
                )
                return cached.capability
            return None

        self._entries[model_name] = CachedCapability(
            capability=capability,
            fetched_at=self._clock(),
        )
        return capability

    async def warm_up(self) -> dict[str, bool]:
        model_names = self._registry.model_names()
        logger.info("capability_warmup_start models=%d", len(model_names))
        results = await asyncio.gather(
            *(self.resolve(name) for name in model_names),
            return_exceptions=True,
        )
        outcome: dict[str, bool] = {}
        for name, result in zip(model_names, results):
            if isinstance(result, BaseException):
                logger.error("capability_warmup_error model=%s error=%r", name, result)
                outcome[name] = False
            else:
                outcome[name] = result is not None
        logger.info(
            "capability_warmup_complete ready=%d failed=%d",
            sum(1 for ready in outcome.values() if ready),
            sum(1 for ready in outcome.values() if not ready),
        )
        return outcome
