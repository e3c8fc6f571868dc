import asyncio
import logging
import traceback
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from app_builder.api.deps import get_runner, get_store
from app_builder.models import RUN_EVENT_NAME, TriggerEvent
from app_builder.sse import SSE_HEADERS, emit_event, sse_format, tool_event_sse
from app_builder.storage.base import MessageStore
from app_builder.workflow.runner import RunRecord, WorkflowRunner


logger = logging.getLogger("app_builder.api.runs")

SLEEP_INTERVAL_SECONDS = 0.05

router = APIRouter(prefix="/api", tags=["runs"])


@router.post("/events")
async def send_event(
    event: TriggerEvent,
    store: MessageStore = Depends(get_store),
    runner: WorkflowRunner = Depends(get_runner),
) -> dict[str, Any]:
    """Accept a raw trigger event and schedule its run."""
    if event.name != RUN_EVENT_NAME:
        raise HTTPException(status_code=400, detail=f"Unsupported event: {event.name}")
    await store.get_project(event.data.project_id)
    record = runner.trigger(event)
    return {"run_id": record.run_id, "status": record.status}


def _require_run(runner: WorkflowRunner, run_id: str) -> RunRecord:
    record = runner.get(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    return record


@router.get("/runs/{run_id}")
async def get_run(run_id: str, runner: WorkflowRunner = Depends(get_runner)) -> dict[str, Any]:
    record = _require_run(runner, run_id)
    return record.model_dump(mode="json", exclude={"events"})


@router.get("/runs/{run_id}/events")
async def run_events(run_id: str, runner: WorkflowRunner = Depends(get_runner)):
    """Stream a run's progress events until it finishes."""
    record = _require_run(runner, run_id)

    async def event_generator() -> AsyncGenerator[str, None]:
        last_idx = 0
        try:
            while True:
                # Flush new events
                while last_idx < len(record.events):
                    ev = record.events[last_idx]
                    last_idx += 1
                    if ev.get("event_type") == "tool" and isinstance(ev.get("data"), dict):
                        yield tool_event_sse(run_id, ev["data"])
                    else:
                        yield sse_format(ev)
                if record.finished and last_idx >= len(record.events):
                    return
                await asyncio.sleep(SLEEP_INTERVAL_SECONDS)
        except Exception as e:
            logger.error("run_events[%s] error: %s", run_id, str(e))
            tb = traceback.format_exc(limit=10)
            yield sse_format(emit_event(run_id, "run_log", data=f"stream exception: {str(e)}\n{tb}"))
            yield sse_format(emit_event(run_id, "run_failed", error=str(e)))

    return StreamingResponse(event_generator(), headers=SSE_HEADERS)
