import logging
from typing import Any

from agents import (
    Agent,
    FunctionTool,
    ItemHelpers,
    MaxTurnsExceeded,
    RunContextWrapper,
    RunHooks,
    Runner,
)

from app_builder.agent.context import AgentState
from app_builder.agent.prompts import CODE_AGENT_PROMPT, TASK_SUMMARY_OPEN


logger = logging.getLogger("app_builder.agent.network")

TURN_LIMIT_NOTE = "You ran out of turns before finishing. Continue the task from where you stopped."


def result_messages(result: Any) -> list[dict[str, Any]]:
    """Flatten an SDK run result into ``{role, type, content}`` messages.

    Assistant text comes out as ``type="text"`` with content given as a list of
    ``{"text": ...}`` parts, in output order.
    """
    messages: list[dict[str, Any]] = []
    for item in getattr(result, "new_items", None) or []:
        kind = getattr(item, "type", None)
        if kind == "message_output_item":
            parts = [
                {"text": part.text}
                for part in (getattr(item.raw_item, "content", None) or [])
                if getattr(part, "text", None) is not None
            ]
            messages.append({"role": "assistant", "type": "text", "content": parts})
        elif kind == "tool_call_item":
            name = getattr(item.raw_item, "name", None)
            messages.append({"role": "assistant", "type": "tool_call", "content": name})
        elif kind == "tool_call_output_item":
            messages.append({"role": "tool_result", "type": "tool_result", "content": item.output})
    return messages


def last_assistant_text(messages: list[dict[str, Any]]) -> str | None:
    """Text of the most recent assistant text message, parts joined in order."""
    for message in reversed(messages):
        if message.get("role") != "assistant" or message.get("type") != "text":
            continue
        content = message.get("content")
        if not content:
            return None
        if isinstance(content, str):
            return content
        return "".join(
            part.get("text", "") if isinstance(part, dict) else str(part) for part in content
        )
    return None


def capture_summary(state: AgentState, text: str | None) -> bool:
    """Record ``text`` as the run summary when it carries the completion marker."""
    if text and TASK_SUMMARY_OPEN in text:
        state.summary = text
        return True
    return False


def partial_input(error: MaxTurnsExceeded, input_items: list[Any]) -> list[Any]:
    """Conversation so far for a run that stopped at the turn limit.

    Uses the run data attached to the exception when the SDK provides it, so
    the model keeps the tool calls it already made; otherwise the previous input.
    """
    run_data = getattr(error, "run_data", None)
    if run_data is None:
        items = list(input_items)
        # Replace, not stack, the note from an earlier cut-off iteration
        last = items[-1] if items else None
        if isinstance(last, dict) and str(last.get("content", "")).startswith(TURN_LIMIT_NOTE):
            items.pop()
        return items
    items = ItemHelpers.input_to_new_input_list(run_data.input)
    items.extend(item.to_input_item() for item in run_data.new_items)
    return items


def turn_limit_note(state: AgentState) -> dict[str, str]:
    """User turn telling the model where it left off."""
    calls = [ev["name"] for ev in state.events if ev.get("phase") == "completed"]
    written = sorted(
        {
            path
            for ev in state.events
            if ev.get("phase") == "completed" and ev.get("name") == "createOrUpdateFiles"
            for path in (ev.get("output_data") or {}).get("files", [])
        }
    )
    lines = [TURN_LIMIT_NOTE]
    if calls:
        lines.append(f"Tool calls so far: {len(calls)} ({', '.join(sorted(set(calls)))}).")
    if written:
        lines.append("Files already written: " + ", ".join(written) + ".")
    lines.append(f"Finish with the {TASK_SUMMARY_OPEN} block when everything is done.")
    return {"role": "user", "content": "\n".join(lines)}


class SummaryHooks(RunHooks[AgentState]):
    """Watches each agent's final text for the task summary marker."""

    async def on_agent_end(
        self, context: RunContextWrapper[AgentState], agent: Agent[AgentState], output: Any
    ) -> None:
        if output is None:
            return
        if capture_summary(context.context, output if isinstance(output, str) else str(output)):
            logger.info("agent %s signalled completion", agent.name)


def create_code_agent(tools: list[FunctionTool], model: str | None = None) -> Agent[AgentState]:
    kwargs: dict[str, Any] = {
        "name": "code-agent",
        "instructions": CODE_AGENT_PROMPT,
        "tools": tools,
    }
    if model:
        kwargs["model"] = model
    return Agent(**kwargs)


class Network:
    """Runs one agent repeatedly until it reports completion or the iteration cap.

    States: RUNNING while ``state.summary`` is empty, DONE once it is set.
    Each iteration is a full SDK run (model turns plus tool calls); the next
    iteration resumes from the conversation the previous one produced.
    """

    def __init__(
        self,
        agent: Agent[AgentState],
        *,
        max_iterations: int = 10,
        max_turns: int = 10,
        runner: Any = Runner,
        hooks: RunHooks[AgentState] | None = None,
    ) -> None:
        self.agent = agent
        self.max_iterations = max_iterations
        self.max_turns = max_turns
        self._runner = runner
        self._hooks = hooks or SummaryHooks()
        self.iterations = 0

    async def run(
        self, prompt: str, history: list[dict[str, str]], state: AgentState
    ) -> AgentState:
        input_items: list[Any] = [*history, {"role": "user", "content": prompt}]
        self.iterations = 0
        while not state.done and self.iterations < self.max_iterations:
            self.iterations += 1
            logger.info(
                "network[%s] iteration %d/%d", state.sandbox_id, self.iterations, self.max_iterations
            )
            try:
                result = await self._runner.run(
                    self.agent,
                    input=input_items,
                    context=state,
                    max_turns=self.max_turns,
                    hooks=self._hooks,
                )
            except MaxTurnsExceeded as e:
                logger.warning(
                    "network[%s] iteration %d hit max_turns=%d without finishing",
                    state.sandbox_id,
                    self.iterations,
                    self.max_turns,
                )
                input_items = [*partial_input(e, input_items), turn_limit_note(state)]
                continue
            if not state.done:
                capture_summary(state, last_assistant_text(result_messages(result)))
            input_items = result.to_input_list()

        if not state.done:
            logger.warning(
                "network[%s] stopped after %d iteration(s) without a task summary",
                state.sandbox_id,
                self.iterations,
            )
        return state
