import logging
from typing import Any, Callable

from app_builder.agent.context import AgentState
from app_builder.agent.network import Network
from app_builder.agent.prompts import ERROR_MESSAGE
from app_builder.agent.synthesizer import Synthesis, Synthesizer
from app_builder.agent.tools import ToolSet
from app_builder.config import Settings
from app_builder.models import FragmentInput, MessageType, TriggerEvent, WorkflowResult
from app_builder.run_store import CheckpointStore, StepTools
from app_builder.sandbox.handle import SandboxProvider
from app_builder.sandbox.utils import preview_url, start_app
from app_builder.storage.base import MessageStore
from app_builder.workflow.history import LoadedContext, load_context


logger = logging.getLogger("app_builder.workflow")

NetworkFactory = Callable[[ToolSet], Network]
EventSink = Callable[[str, Any], None]


class CodeAgentWorkflow:
    """Durable code-agent run: one trigger event in, one persisted message out.

    Steps (each checkpointed under the run id, so a re-invocation skips what
    already completed):
    get-sandbox-id -> get-previous-messages -> start-dev-server ->
    code-agent-network -> synthesize -> get-sandbox-url -> save-result.
    The cached sandbox connection is released when the run ends.
    """

    def __init__(
        self,
        settings: Settings,
        store: MessageStore,
        checkpoints: CheckpointStore,
        sandboxes: SandboxProvider,
        network_factory: NetworkFactory,
        synthesizer: Synthesizer,
    ) -> None:
        self.settings = settings
        self.store = store
        self.checkpoints = checkpoints
        self.sandboxes = sandboxes
        self.network_factory = network_factory
        self.synthesizer = synthesizer

    async def run(self, event: TriggerEvent, on_event: EventSink | None = None) -> WorkflowResult:
        run_id = event.id
        prompt = event.data.value
        project_id = event.data.project_id
        steps = StepTools(run_id, self.checkpoints)

        def emit(event_type: str, data: Any = None) -> None:
            if on_event is not None:
                on_event(event_type, data)

        logger.info("run[%s] start project=%s prompt_len=%d", run_id, project_id, len(prompt))

        # PROVISION: only the id crosses the step boundary
        emit("step_started", {"step": "get-sandbox-id"})
        sandbox_id: str = await steps.run(
            "get-sandbox-id",
            lambda: self.sandboxes.create(
                self.settings.sandbox_template, ports=[self.settings.sandbox_port]
            ),
        )
        emit("sandbox_ready", {"sandbox_id": sandbox_id})
        try:
            return await self._run_in_sandbox(event, steps, sandbox_id, emit)
        finally:
            # Drops only the cached client; the preview keeps running
            await self.sandboxes.release(sandbox_id)

    async def _run_in_sandbox(
        self,
        event: TriggerEvent,
        steps: StepTools,
        sandbox_id: str,
        emit: Callable[..., None],
    ) -> WorkflowResult:
        run_id = event.id
        prompt = event.data.value
        project_id = event.data.project_id

        # LOAD_CONTEXT
        emit("step_started", {"step": "get-previous-messages"})

        async def _load() -> dict[str, Any]:
            loaded = await load_context(
                self.store,
                project_id,
                self.settings.history_limit,
                prompt=prompt,
                message_id=event.data.message_id,
            )
            return loaded.model_dump()

        context = LoadedContext.model_validate(await steps.run("get-previous-messages", _load))
        history = list(context.formatted_messages)

        # The preview needs a running app holding the latest files before the agent edits it
        emit("step_started", {"step": "start-dev-server"})

        async def _start_dev_server() -> bool:
            sandbox = await self.sandboxes.connect(sandbox_id)
            await start_app(sandbox, context.latest_files, self.settings)
            return True

        await steps.run("start-dev-server", _start_dev_server)

        # RUN_AGENT_NETWORK: tool calls inside are their own steps
        emit("step_started", {"step": "code-agent-network"})
        executed = False

        async def _network() -> dict[str, Any]:
            nonlocal executed
            executed = True
            state = AgentState(sandbox_id=sandbox_id, files=dict(context.latest_files))
            toolset = ToolSet(sandbox_id, self.sandboxes, steps, on_event=lambda ev: emit("tool", ev))
            network = self.network_factory(toolset)
            await network.run(prompt, history, state)
            return {"summary": state.summary, "files": state.files, "events": state.events}

        network_state = await steps.run("code-agent-network", _network)
        if not executed:
            # Replayed from checkpoint: show the recorded tool activity again
            for ev in network_state.get("events", []):
                emit("tool", ev)
        summary: str = network_state["summary"]
        files: dict[str, str] = network_state["files"]

        # SYNTHESIZE
        emit("step_started", {"step": "synthesize"})

        async def _synthesize() -> dict[str, Any]:
            synthesis = await self.synthesizer.synthesize(summary, files)
            return synthesis.model_dump()

        synthesis = Synthesis.model_validate(await steps.run("synthesize", _synthesize))

        # RESOLVE_PREVIEW_URL
        emit("step_started", {"step": "get-sandbox-url"})

        async def _sandbox_url() -> str:
            sandbox = await self.sandboxes.connect(sandbox_id)
            return preview_url(sandbox.get_host(self.settings.sandbox_port))

        sandbox_url: str = await steps.run("get-sandbox-url", _sandbox_url)

        # PERSIST: exactly one message per run
        emit("step_started", {"step": "save-result"})

        async def _save() -> str:
            if synthesis.is_error:
                message = await self.store.create_result_message(
                    project_id,
                    ERROR_MESSAGE,
                    MessageType.ERROR,
                    run_id=run_id,
                )
            else:
                message = await self.store.create_result_message(
                    project_id,
                    synthesis.response,
                    MessageType.RESULT,
                    fragment=FragmentInput(
                        sandbox_url=sandbox_url,
                        title=synthesis.title,
                        files=files,
                    ),
                    run_id=run_id,
                )
            return message.id

        message_id: str = await steps.run("save-result", _save)

        result = WorkflowResult(
            run_id=run_id,
            project_id=project_id,
            preview_url=sandbox_url,
            title=synthesis.title,
            summary=summary,
            files=files,
            message_id=message_id,
            is_error=synthesis.is_error,
        )
        logger.info(
            "run[%s] complete is_error=%s files=%d url=%s",
            run_id,
            result.is_error,
            len(files),
            sandbox_url,
        )
        emit("run_completed", result.public())
        return result
