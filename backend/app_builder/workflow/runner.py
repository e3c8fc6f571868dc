import asyncio
import logging
import time
from collections import defaultdict
from typing import Any

from pydantic import BaseModel, Field

from app_builder.models import TriggerEvent, WorkflowResult
from app_builder.sse import emit_event
from app_builder.workflow.orchestrator import CodeAgentWorkflow


logger = logging.getLogger("app_builder.workflow.runner")


class RunRecord(BaseModel):
    run_id: str
    project_id: str
    status: str = "queued"
    attempts: int = 0
    error: str | None = None
    result: WorkflowResult | None = None
    events: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.status in {"completed", "failed"}


class WorkflowRunner:
    """Schedules triggered runs as background tasks and retries failed attempts.

    A retry re-invokes the whole workflow with the same event; completed steps
    replay from their checkpoints. With ``serialize_projects`` runs for the
    same project take turns behind a per-project lock. Only the newest
    ``history_limit`` finished runs are kept for status queries.
    """

    def __init__(
        self,
        workflow: CodeAgentWorkflow,
        *,
        max_attempts: int = 3,
        serialize_projects: bool = True,
        backoff_seconds: float = 0.25,
        history_limit: int = 200,
    ) -> None:
        self.workflow = workflow
        self.max_attempts = max(1, max_attempts)
        self.serialize_projects = serialize_projects
        self.backoff_seconds = backoff_seconds
        self.history_limit = history_limit
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._runs: dict[str, RunRecord] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._pending: defaultdict[str, int] = defaultdict(int)

    def get(self, run_id: str) -> RunRecord | None:
        return self._runs.get(run_id)

    def trigger(self, event: TriggerEvent) -> RunRecord:
        """Schedule a run for ``event``; a duplicate event id returns the existing run."""
        existing = self._runs.get(event.id)
        if existing is not None:
            return existing
        record = RunRecord(run_id=event.id, project_id=event.data.project_id)
        self._runs[event.id] = record
        self._pending[event.data.project_id] += 1
        self._tasks[event.id] = asyncio.create_task(self._execute(event, record))
        logger.info("trigger[%s] scheduled project=%s", event.id, event.data.project_id)
        return record

    async def wait(self, run_id: str) -> RunRecord:
        record = self._runs[run_id]
        task = self._tasks.get(run_id)
        if task is not None:
            await task
        return record

    def _record_event(self, record: RunRecord, event_type: str, data: Any = None, error: Any = None) -> None:
        record.events.append(emit_event(record.run_id, event_type, data=data, error=error))

    async def _execute(self, event: TriggerEvent, record: RunRecord) -> None:
        project_id = event.data.project_id
        try:
            if self.serialize_projects:
                async with self._locks[project_id]:
                    await self._attempt_loop(event, record)
            else:
                await self._attempt_loop(event, record)
        finally:
            self._pending[project_id] -= 1
            if self._pending[project_id] == 0:
                del self._pending[project_id]
                self._locks.pop(project_id, None)
            self._tasks.pop(event.id, None)
            self._prune()

    def _prune(self) -> None:
        """Forget the oldest finished runs beyond ``history_limit``."""
        finished = [run_id for run_id, r in self._runs.items() if r.finished]
        for run_id in finished[: max(0, len(finished) - self.history_limit)]:
            del self._runs[run_id]

    async def _attempt_loop(self, event: TriggerEvent, record: RunRecord) -> None:
        record.status = "running"
        self._record_event(record, "run_started", data={"project_id": record.project_id})
        while True:
            record.attempts += 1
            started = time.time()
            try:
                result = await self.workflow.run(
                    event,
                    on_event=lambda t, d: self._record_event(record, t, data=d),
                )
            except Exception as e:
                logger.exception(
                    "run[%s] attempt %d/%d failed", record.run_id, record.attempts, self.max_attempts
                )
                self._record_event(
                    record,
                    "run_log",
                    data=f"attempt {record.attempts} failed: {str(e)}",
                )
                if record.attempts >= self.max_attempts:
                    record.status = "failed"
                    record.error = str(e)
                    self._record_event(record, "run_failed", error=str(e))
                    return
                await asyncio.sleep(self.backoff_seconds * (2 ** (record.attempts - 1)))
                continue
            record.status = "completed"
            record.result = result
            logger.info(
                "run[%s] finished in %.1fs after %d attempt(s)",
                record.run_id,
                time.time() - started,
                record.attempts,
            )
            return
