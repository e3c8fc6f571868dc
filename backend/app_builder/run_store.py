from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Protocol

from vercel.cache import AsyncRuntimeCache

from app_builder.errors import StepError


logger = logging.getLogger("app_builder.run_store")


class CheckpointStore(Protocol):
    async def get(self, run_id: str, step_id: str) -> tuple[bool, Any]:
        ...

    async def set(self, run_id: str, step_id: str, value: Any) -> None:
        ...


def _cache_key(run_id: str, step_id: str) -> str:
    return f"run:{run_id}:step:{step_id}"


class RuntimeCacheCheckpointStore:
    """Step results stored in Vercel Runtime Cache, tagged by run id."""

    def __init__(self, namespace: str, ttl_seconds: int, cache: Any | None = None) -> None:
        self._ttl = ttl_seconds
        self._cache = cache if cache is not None else AsyncRuntimeCache(namespace=namespace)

    async def get(self, run_id: str, step_id: str) -> tuple[bool, Any]:
        val = await self._cache.get(_cache_key(run_id, step_id))
        # Values are boxed so a step that returned None is still a hit
        if isinstance(val, dict) and "value" in val:
            return True, val["value"]
        return False, None

    async def set(self, run_id: str, step_id: str, value: Any) -> None:
        await self._cache.set(
            _cache_key(run_id, step_id),
            {"value": value},
            {"ttl": self._ttl, "tags": [f"run:{run_id}"]},
        )


class MemoryCheckpointStore:
    def __init__(self) -> None:
        self.values: dict[str, Any] = {}

    async def get(self, run_id: str, step_id: str) -> tuple[bool, Any]:
        key = _cache_key(run_id, step_id)
        if key in self.values:
            return True, self.values[key]
        return False, None

    async def set(self, run_id: str, step_id: str, value: Any) -> None:
        self.values[_cache_key(run_id, step_id)] = value


class StepTools:
    """Durable, memoized step execution for one workflow run.

    ``run(step_id, fn)`` returns the checkpointed result when the step already
    completed for this run; otherwise it awaits ``fn`` and checkpoints its
    (JSON-compatible) result. A step id used more than once in a run is
    suffixed ``:1``, ``:2``... in call order, so replaying the same sequence
    of calls maps each call back onto its own checkpoint.
    """

    def __init__(self, run_id: str, store: CheckpointStore) -> None:
        self.run_id = run_id
        self._store = store
        self._seen: defaultdict[str, int] = defaultdict(int)
        self.executed: list[str] = []
        self.replayed: list[str] = []

    def _resolve_id(self, step_id: str) -> str:
        count = self._seen[step_id]
        self._seen[step_id] += 1
        return step_id if count == 0 else f"{step_id}:{count}"

    async def run(self, step_id: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        resolved = self._resolve_id(step_id)
        found, value = await self._store.get(self.run_id, resolved)
        if found:
            logger.debug("run[%s] step %s replayed from checkpoint", self.run_id, resolved)
            self.replayed.append(resolved)
            return value
        logger.info("run[%s] step %s started", self.run_id, resolved)
        try:
            value = await fn()
        except Exception as e:
            logger.warning("run[%s] step %s failed: %s", self.run_id, resolved, str(e))
            raise StepError(self.run_id, resolved, e) from e
        await self._store.set(self.run_id, resolved, value)
        self.executed.append(resolved)
        logger.info("run[%s] step %s completed", self.run_id, resolved)
        return value
