from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest
from agents import RunContextWrapper

from app_builder.agent.context import AgentState
from app_builder.agent.network import Network, create_code_agent
from app_builder.agent.synthesizer import Synthesizer, create_response_agent, create_title_agent
from app_builder.agent.tools import ToolSet, build_function_tools
from app_builder.config import Settings
from app_builder.errors import CommandError, SandboxError
from app_builder.run_store import MemoryCheckpointStore
from app_builder.sandbox.handle import CommandResult
from app_builder.storage.memory import MemoryMessageStore
from app_builder.workflow.orchestrator import CodeAgentWorkflow


class FakeSandbox:
    """Stands in for SandboxHandle: in-memory files and scripted commands."""

    def __init__(self, sandbox_id: str) -> None:
        self.sandbox_id = sandbox_id
        self.files: dict[str, str] = {}
        self.commands: list[str] = []
        self.command_results: dict[str, CommandResult | Exception] = {}
        self.fail_write_on: set[str] = set()
        self.started: list[str] = []
        self.ready = True
        self.fail_start: Exception | None = None
        self.host = f"3000-{sandbox_id}.vercel.run"

    async def run(self, command, on_stdout=None, on_stderr=None) -> CommandResult:
        self.commands.append(command)
        outcome = self.command_results.get(command, CommandResult(exit_code=0, stdout=f"ran {command}"))
        if isinstance(outcome, CommandError):
            if on_stdout and outcome.stdout:
                on_stdout(outcome.stdout)
            if on_stderr and outcome.stderr:
                on_stderr(outcome.stderr)
            raise outcome
        if isinstance(outcome, Exception):
            raise outcome
        if on_stdout and outcome.stdout:
            on_stdout(outcome.stdout)
        return outcome

    async def start_process(self, command, ready_patterns=(), timeout_seconds=120.0) -> bool:
        if self.fail_start is not None:
            raise self.fail_start
        self.started.append(command)
        return self.ready

    async def write_file(self, path: str, content: str) -> None:
        if path in self.fail_write_on:
            raise RuntimeError(f"disk full writing {path}")
        self.files[path] = content

    async def write_files(self, files: dict[str, str]) -> int:
        for path, content in files.items():
            await self.write_file(path, content)
        return len(files)

    async def read_file(self, path: str) -> str:
        if path not in self.files:
            raise CommandError(f"read {path}", 1, "", "No such file")
        return self.files[path]

    def get_host(self, port: int) -> str:
        return self.host


class FakeSandboxProvider:
    def __init__(self) -> None:
        self.sandboxes: dict[str, FakeSandbox] = {}
        self.created: list[tuple[str, list[int] | None]] = []
        self.fail_create = False
        self.fail_connect = False
        self.released: list[str] = []
        self.on_create = None

    async def create(self, template: str, ports: list[int] | None = None) -> str:
        if self.fail_create:
            raise SandboxError("quota exceeded")
        sandbox_id = f"sbx_{len(self.created) + 1}"
        self.created.append((template, ports))
        self.sandboxes[sandbox_id] = FakeSandbox(sandbox_id)
        if self.on_create is not None:
            self.on_create(self.sandboxes[sandbox_id])
        return sandbox_id

    async def connect(self, sandbox_id: str) -> FakeSandbox:
        if self.fail_connect or sandbox_id not in self.sandboxes:
            raise SandboxError(f"Failed to connect to sandbox {sandbox_id}")
        return self.sandboxes[sandbox_id]

    async def release(self, sandbox_id: str) -> None:
        self.released.append(sandbox_id)


def text_result(text: str, input_items: list[Any] | None = None) -> SimpleNamespace:
    """Shape of an SDK RunResult as far as the app reads it."""
    item = SimpleNamespace(
        type="message_output_item",
        raw_item=SimpleNamespace(content=[SimpleNamespace(text=text)]),
    )
    return SimpleNamespace(
        new_items=[item],
        final_output=text,
        to_input_list=lambda: [*(input_items or []), {"role": "assistant", "content": text}],
    )


class ScriptedAgentRunner:
    """Plays one scripted turn per ``run`` call: tool calls first, then final text.

    A turn is ``(calls, text)``; ``text`` may be an exception to raise instead.
    When the script runs out, the last turn repeats.
    """

    def __init__(self, toolset: ToolSet, turns: list[tuple[list[Any], Any]]) -> None:
        self.toolset = toolset
        self.turns = turns
        self.calls = 0
        self.inputs: list[list[Any]] = []

    async def run(self, agent, input, context, max_turns, hooks):
        turn = self.turns[min(self.calls, len(self.turns) - 1)]
        self.calls += 1
        self.inputs.append(list(input))
        calls, text = turn
        for call in calls:
            await self.toolset.invoke(context, call)
        if isinstance(text, Exception):
            raise text
        await hooks.on_agent_end(RunContextWrapper(context=context), agent, text)
        return text_result(text, list(input))


class CannedRunner:
    """Answers title/response agents by agent name."""

    def __init__(self, outputs: dict[str, Any]) -> None:
        self.outputs = outputs
        self.prompts: list[tuple[str, str]] = []

    async def run(self, agent, input, **kwargs):
        self.prompts.append((agent.name, input))
        out = self.outputs[agent.name]
        if isinstance(out, str):
            return text_result(out)
        return SimpleNamespace(new_items=out, final_output=None, to_input_list=lambda: [])


@pytest.fixture
def settings() -> Settings:
    return Settings(run_store_backend="memory", agent_max_iterations=10)


@pytest.fixture
def store() -> MemoryMessageStore:
    return MemoryMessageStore()


@pytest.fixture
def sandboxes() -> FakeSandboxProvider:
    return FakeSandboxProvider()


@pytest.fixture
def checkpoints() -> MemoryCheckpointStore:
    return MemoryCheckpointStore()


@pytest.fixture
def canned_runner() -> CannedRunner:
    return CannedRunner(
        {
            "fragment-title-generator": "Todo App",
            "response-generator": "Here's your todo app.",
        }
    )


def make_workflow(
    settings: Settings,
    store,
    checkpoints,
    sandboxes,
    turns: list[tuple[list[Any], Any]],
    canned_runner: CannedRunner,
    runners: list[ScriptedAgentRunner] | None = None,
) -> CodeAgentWorkflow:
    def network_factory(toolset: ToolSet) -> Network:
        runner = ScriptedAgentRunner(toolset, turns)
        if runners is not None:
            runners.append(runner)
        agent = create_code_agent(build_function_tools(toolset), settings.agent_model)
        return Network(
            agent,
            max_iterations=settings.agent_max_iterations,
            max_turns=settings.agent_max_turns,
            runner=runner,
        )

    synthesizer = Synthesizer(
        create_title_agent(settings.agent_model),
        create_response_agent(settings.agent_model),
        runner=canned_runner,
    )
    return CodeAgentWorkflow(
        settings=settings,
        store=store,
        checkpoints=checkpoints,
        sandboxes=sandboxes,
        network_factory=network_factory,
        synthesizer=synthesizer,
    )


def new_state(sandbox_id: str = "sbx_1", **kwargs) -> AgentState:
    return AgentState(sandbox_id=sandbox_id, **kwargs)
