from __future__ import annotations

import asyncio

from fal_image_gateway.capabilities.cache import CapabilityCache
from fal_image_gateway.capabilities.schema import ModelCapability
from fal_image_gateway.errors import SchemaFetchError, SchemaShapeError
from fal_image_gateway.registry import SupportedModelRegistry

DAY = 24 * 60 * 60


def _capability(endpoint_id: str, *, aspect: bool = False) -> ModelCapability:
    return ModelCapability(
        submit_endpoint=f"https://queue.fal.run/{endpoint_id}",
        supports_discrete_size=True,
        supports_aspect_ratio=aspect,
        uses_size_object=False,
    )


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class _Fetcher:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.failing: set[str] = set()
        self.versions: dict[str, int] = {}

    async def fetch(self, endpoint_id: str) -> ModelCapability:
        self.calls.append(endpoint_id)
        if endpoint_id in self.failing:
            raise SchemaFetchError(endpoint_id, "boom")
        version = self.versions.get(endpoint_id, 0) + 1
        self.versions[endpoint_id] = version
        return _capability(endpoint_id, aspect=version % 2 == 0)


def _cache(fetcher: _Fetcher, clock: _Clock) -> CapabilityCache:
    registry = SupportedModelRegistry(
        {"flux-dev": "fal-ai/flux/dev", "sdxl": "fal-ai/sdxl"}
    )
    return CapabilityCache(
        registry=registry, fetcher=fetcher, ttl_seconds=DAY, clock=clock
    )


def test_resolutions_within_ttl_fetch_once() -> None:
    fetcher, clock = _Fetcher(), _Clock()
    cache = _cache(fetcher, clock)

    async def _run() -> None:
        first = await cache.resolve("flux-dev")
        clock.now += DAY - 1
        second = await cache.resolve("flux-dev")
        assert first is second

    asyncio.run(_run())
    assert fetcher.calls == ["fal-ai/flux/dev"]


def test_resolution_after_ttl_refetches_exactly_once() -> None:
    fetcher, clock = _Fetcher(), _Clock()
    cache = _cache(fetcher, clock)

    async def _run() -> None:
        first = await cache.resolve("flux-dev")
        clock.now += DAY
        refreshed = await cache.resolve("flux-dev")
        again = await cache.resolve("flux-dev")
        assert first is not None and refreshed is not None
        assert first.supports_aspect_ratio is False
        assert refreshed.supports_aspect_ratio is True
        assert again is refreshed

    asyncio.run(_run())
    assert fetcher.calls == ["fal-ai/flux/dev", "fal-ai/flux/dev"]
    entry = cache.peek("flux-dev")
    assert entry is not None and entry.fetched_at == 1000.0 + DAY


def test_failed_refresh_serves_stale_entry() -> None:
    fetcher, clock = _Fetcher(), _Clock()
    cache = _cache(fetcher, clock)

    async def _run() -> None:
        original = await cache.resolve("flux-dev")
        clock.now += 3 * DAY
        fetcher.failing.add("fal-ai/flux/dev")
        stale = await cache.resolve("flux-dev")
        assert stale is original

    asyncio.run(_run())
    assert len(fetcher.calls) == 2
    entry = cache.peek("flux-dev")
    assert entry is not None and entry.fetched_at == 1000.0


def test_failed_fetch_without_previous_entry_returns_none() -> None:
    fetcher, clock = _Fetcher(), _Clock()
    fetcher.failing.add("fal-ai/sdxl")
    cache = _cache(fetcher, clock)
    assert asyncio.run(cache.resolve("sdxl")) is None
    assert cache.peek("sdxl") is None


def test_shape_errors_are_treated_like_fetch_failures() -> None:
    class _ShapeFetcher:
        async def fetch(self, endpoint_id: str) -> ModelCapability:
            raise SchemaShapeError(endpoint_id, "no properties")

    registry = SupportedModelRegistry({"flux-dev": "fal-ai/flux/dev"})
    cache = CapabilityCache(registry=registry, fetcher=_ShapeFetcher())
    assert asyncio.run(cache.resolve("flux-dev")) is None


def test_unknown_model_never_triggers_a_fetch() -> None:
    fetcher, clock = _Fetcher(), _Clock()
    cache = _cache(fetcher, clock)
    assert asyncio.run(cache.resolve("unknown-model")) is None
    assert fetcher.calls == []


def test_warm_up_fetches_every_model_and_isolates_failures() -> None:
    fetcher, clock = _Fetcher(), _Clock()
    fetcher.failing.add("fal-ai/sdxl")
    cache = _cache(fetcher, clock)

    outcome = asyncio.run(cache.warm_up())

    assert outcome == {"flux-dev": True, "sdxl": False}
    assert sorted(fetcher.calls) == ["fal-ai/flux/dev", "fal-ai/sdxl"]
    assert cache.peek("flux-dev") is not None


def test_warm_up_survives_unexpected_fetcher_exceptions() -> None:
    class _BrokenFetcher:
        async def fetch(self, endpoint_id: str) -> ModelCapability:
            raise RuntimeError("unexpected")

    registry = SupportedModelRegistry({"flux-dev": "fal-ai/flux/dev"})
    cache = CapabilityCache(registry=registry, fetcher=_BrokenFetcher())
    assert asyncio.run(cache.warm_up()) == {"flux-dev": False}
