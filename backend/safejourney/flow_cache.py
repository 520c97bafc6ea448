from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from .models import TrafficFlowSample

FlowFetcher = Callable[[float, float], Awaitable[TrafficFlowSample | None]]


def flow_cache_key(lat: float, lon: float) -> str:
    # 2 decimal places is roughly a 1 km bucket.
    # + 0.0 folds -0.00 into 0.00.
    return f"{round(float(lat), 2) + 0.0:.2f},{round(float(lon), 2) + 0.0:.2f}"


class TrafficFlowCache:
    """Request-scoped memo of traffic flow samples keyed by rounded coordinates.

    Create one per scoring request and drop it afterwards. Concurrent lookups
    for the same bucket share a single in-flight fetch.
    """

    def __init__(self, fetch: FlowFetcher) -> None:
        self._fetch = fetch
        self._items: dict[str, TrafficFlowSample | None] = {}
        self._inflight: dict[str, asyncio.Task[TrafficFlowSample | None]] = {}

        self._hits = 0
        self._misses = 0

    async def get(self, lat: float, lon: float) -> TrafficFlowSample | None:
        key = flow_cache_key(lat, lon)
        if key in self._items:
            self._hits += 1
            return self._items[key]

        task = self._inflight.get(key)
        if task is not None:
            self._hits += 1
            return await task

        self._misses += 1
        task = asyncio.ensure_future(self._fetch(lat, lon))
        self._inflight[key] = task
        try:
            sample = await task
        finally:
            self._inflight.pop(key, None)
        self._items[key] = sample
        return sample

    def peek(self, lat: float, lon: float) -> TrafficFlowSample | None:
        return self._items.get(flow_cache_key(lat, lon))

    def snapshot(self) -> dict[str, int]:
        return {
            "size": len(self._items),
            "hits": self._hits,
            "misses": self._misses,
        }
