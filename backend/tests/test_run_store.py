import pytest

from app_builder.errors import StepError
from app_builder.run_store import MemoryCheckpointStore, RuntimeCacheCheckpointStore, StepTools


class FakeRuntimeCache:
    def __init__(self):
        self.data = {}
        self.options = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, options=None):
        self.data[key] = value
        self.options[key] = options


@pytest.mark.asyncio
async def test_step_result_is_replayed():
    store = MemoryCheckpointStore()
    calls = []

    async def provision():
        calls.append(1)
        return "sbx_1"

    first = StepTools("evt_1", store)
    assert await first.run("get-sandbox-id", provision) == "sbx_1"

    second = StepTools("evt_1", store)
    assert await second.run("get-sandbox-id", provision) == "sbx_1"

    assert calls == [1]
    assert second.replayed == ["get-sandbox-id"]
    assert second.executed == []


@pytest.mark.asyncio
async def test_repeated_step_ids_get_suffixes():
    store = MemoryCheckpointStore()
    steps = StepTools("evt_1", store)

    async def const(v):
        return v

    await steps.run("terminal", lambda: const("a"))
    await steps.run("terminal", lambda: const("b"))
    await steps.run("terminal", lambda: const("c"))

    assert steps.executed == ["terminal", "terminal:1", "terminal:2"]

    replay = StepTools("evt_1", store)
    results = [await replay.run("terminal", lambda: const("zzz")) for _ in range(3)]
    assert results == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_runs_do_not_share_checkpoints():
    store = MemoryCheckpointStore()

    async def const(v):
        return v

    await StepTools("evt_1", store).run("synthesize", lambda: const("one"))
    assert await StepTools("evt_2", store).run("synthesize", lambda: const("two")) == "two"


@pytest.mark.asyncio
async def test_failed_step_is_not_checkpointed():
    store = MemoryCheckpointStore()
    steps = StepTools("evt_1", store)

    async def boom():
        raise RuntimeError("sandbox unreachable")

    with pytest.raises(StepError) as exc_info:
        await steps.run("get-sandbox-url", boom)

    assert exc_info.value.step_id == "get-sandbox-url"
    assert isinstance(exc_info.value.cause, RuntimeError)
    assert store.values == {}


@pytest.mark.asyncio
async def test_runtime_cache_store_boxes_none_and_tags_run():
    cache = FakeRuntimeCache()
    store = RuntimeCacheCheckpointStore(namespace="test", ttl_seconds=60, cache=cache)

    assert await store.get("evt_1", "save-result") == (False, None)

    await store.set("evt_1", "save-result", None)

    assert await store.get("evt_1", "save-result") == (True, None)
    options = cache.options["run:evt_1:step:save-result"]
    assert options == {"ttl": 60, "tags": ["run:evt_1"]}
