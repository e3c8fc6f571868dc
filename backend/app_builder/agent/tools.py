import json
import logging
from typing import Annotated, Any, Callable, Literal

from pydantic import BaseModel, Field, TypeAdapter
from agents import FunctionTool, RunContextWrapper, function_tool

from app_builder.agent.context import AgentState
from app_builder.sandbox.handle import SandboxProvider
from app_builder.run_store import StepTools


logger = logging.getLogger("app_builder.agent.tools")


class FileEntry(BaseModel):
    path: str
    content: str


class TerminalCall(BaseModel):
    tool: Literal["terminal"] = "terminal"
    command: str


class WriteFilesCall(BaseModel):
    tool: Literal["createOrUpdateFiles"] = "createOrUpdateFiles"
    files: list[FileEntry]


class ReadFilesCall(BaseModel):
    tool: Literal["readFiles"] = "readFiles"
    files: list[str]


ToolCall = Annotated[
    TerminalCall | WriteFilesCall | ReadFilesCall,
    Field(discriminator="tool"),
]

_TOOL_CALL = TypeAdapter(ToolCall)


def parse_tool_call(name: str, arguments: dict[str, Any]) -> TerminalCall | WriteFilesCall | ReadFilesCall:
    """Validate a model-issued call against the closed set of tool schemas."""
    return _TOOL_CALL.validate_python({**arguments, "tool": name})


class ToolOutcome(BaseModel):
    """What a tool hands back: text for the model plus a file delta for the state."""

    output: str
    files: dict[str, str] = Field(default_factory=dict)


class ToolSet:
    """Sandbox-backed tools bound to one run's sandbox id.

    Failures inside a tool never propagate; they come back to the model as
    text so the agent can adapt. When ``steps`` is provided each invocation is
    its own durable step, so a resumed run replays completed tool calls
    instead of executing them again. ``on_event`` sees each started and
    completed tool event as soon as it is recorded.
    """

    def __init__(
        self,
        sandbox_id: str,
        sandboxes: SandboxProvider,
        steps: StepTools | None = None,
        on_event: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self.sandbox_id = sandbox_id
        self._sandboxes = sandboxes
        self._steps = steps
        self._on_event = on_event

    def _record(self, state: AgentState, event: dict[str, Any]) -> None:
        state.events.append(event)
        if self._on_event is not None:
            self._on_event(event)

    async def terminal(self, command: str) -> ToolOutcome:
        buffers = {"stdout": "", "stderr": ""}

        def on_stdout(data: str) -> None:
            buffers["stdout"] += data

        def on_stderr(data: str) -> None:
            buffers["stderr"] += data

        try:
            sandbox = await self._sandboxes.connect(self.sandbox_id)
            result = await sandbox.run(command, on_stdout=on_stdout, on_stderr=on_stderr)
            return ToolOutcome(output=result.stdout)
        except Exception as e:
            logger.warning("terminal[%s] command failed: %s", self.sandbox_id, str(e))
            return ToolOutcome(
                output=(
                    f"Command failed: {e}\n"
                    f"stdout: {buffers['stdout']}\n"
                    f"stderr: {buffers['stderr']}"
                )
            )

    async def create_or_update_files(self, files: list[FileEntry]) -> ToolOutcome:
        # Each file is recorded right after its write succeeds, so a failure
        # midway still reports what actually landed in the sandbox.
        written: dict[str, str] = {}
        try:
            sandbox = await self._sandboxes.connect(self.sandbox_id)
            for entry in files:
                await sandbox.write_file(entry.path, entry.content)
                written[entry.path] = entry.content
        except Exception as e:
            logger.warning(
                "createOrUpdateFiles[%s] failed after %d file(s): %s",
                self.sandbox_id,
                len(written),
                str(e),
            )
            return ToolOutcome(output=f"Error: {e}", files=written)
        return ToolOutcome(output="Updated files: " + ", ".join(written), files=written)

    async def read_files(self, paths: list[str]) -> ToolOutcome:
        try:
            sandbox = await self._sandboxes.connect(self.sandbox_id)
            contents = []
            for path in paths:
                contents.append({"path": path, "content": await sandbox.read_file(path)})
            return ToolOutcome(output=json.dumps(contents))
        except Exception as e:
            logger.warning("readFiles[%s] failed: %s", self.sandbox_id, str(e))
            return ToolOutcome(output=f"Error: {e}")

    async def dispatch(self, call: TerminalCall | WriteFilesCall | ReadFilesCall) -> ToolOutcome:
        if isinstance(call, TerminalCall):
            return await self.terminal(call.command)
        if isinstance(call, WriteFilesCall):
            return await self.create_or_update_files(call.files)
        if isinstance(call, ReadFilesCall):
            return await self.read_files(call.files)
        raise TypeError(f"Unknown tool call: {call!r}")

    async def invoke(self, state: AgentState, call: TerminalCall | WriteFilesCall | ReadFilesCall) -> str:
        """Run one tool call, apply its file delta to ``state`` and return the model-facing text."""
        tool_id = f"tc_{len(state.events)+1}"
        self._record(
            state,
            {
                "phase": "started",
                "tool_id": tool_id,
                "name": call.tool,
                "arguments": call.model_dump(exclude={"tool"}),
            }
        )

        async def _execute() -> dict[str, Any]:
            outcome = await self.dispatch(call)
            return outcome.model_dump()

        if self._steps is not None:
            raw = await self._steps.run(call.tool, _execute)
        else:
            raw = await _execute()
        outcome = ToolOutcome.model_validate(raw)
        state.apply(outcome.files)

        self._record(
            state,
            {
                "phase": "completed",
                "tool_id": tool_id,
                "name": call.tool,
                "output_data": {"output": outcome.output, "files": sorted(outcome.files)},
            }
        )
        return outcome.output


def build_function_tools(toolset: ToolSet) -> list[FunctionTool]:
    """Expose the tool set to the Agents SDK under the names the model sees."""

    @function_tool(name_override="terminal")
    async def terminal(ctx: RunContextWrapper[AgentState], command: str) -> str:
        """Use the terminal to run commands in the sandbox.

        Args:
            command: Shell command to run (e.g. "npm install <package> --yes").
        Returns:
            The command's stdout, or a failure description with stdout and stderr.
        """
        return await toolset.invoke(ctx.context, parse_tool_call("terminal", {"command": command}))

    @function_tool(name_override="createOrUpdateFiles")
    async def create_or_update_files(
        ctx: RunContextWrapper[AgentState], files: list[FileEntry]
    ) -> str:
        """Create or update files in the sandbox.

        Args:
            files: Files to write, each with a relative path and its full content.
        Returns:
            The list of paths written, or an error description.
        """
        call = parse_tool_call(
            "createOrUpdateFiles", {"files": [f.model_dump() for f in files]}
        )
        return await toolset.invoke(ctx.context, call)

    @function_tool(name_override="readFiles")
    async def read_files(ctx: RunContextWrapper[AgentState], files: list[str]) -> str:
        """Read files from the sandbox.

        Args:
            files: Relative paths of the files to read.
        Returns:
            JSON array of {path, content} objects, or an error description.
        """
        return await toolset.invoke(ctx.context, parse_tool_call("readFiles", {"files": files}))

    return [terminal, create_or_update_files, read_files]
