import asyncio
import logging
from typing import Any

from pydantic import BaseModel
from agents import Agent, Runner

from app_builder.agent.network import result_messages
from app_builder.agent.prompts import FRAGMENT_TITLE_PROMPT, RESPONSE_PROMPT


logger = logging.getLogger("app_builder.agent.synthesizer")

TITLE_FALLBACK = "Untitled"
RESPONSE_FALLBACK = "Here you go"


class Synthesis(BaseModel):
    title: str
    response: str
    is_error: bool


def parse_agent_output(messages: list[dict[str, Any]], fallback: str) -> str:
    """Text of the first output message, or ``fallback`` when it is not text.

    List-shaped content is flattened by concatenating its parts in order.
    """
    if not messages:
        return fallback
    first = messages[0]
    if first.get("type") != "text":
        return fallback
    content = first.get("content")
    if isinstance(content, list):
        return "".join(
            part.get("text", "") if isinstance(part, dict) else str(part) for part in content
        )
    if isinstance(content, str):
        return content
    return fallback


def is_error_outcome(summary: str, files: dict[str, str]) -> bool:
    """A run fails unless it both signalled completion and produced files."""
    return not summary or not files


def create_title_agent(model: str | None = None) -> Agent:
    kwargs: dict[str, Any] = {"name": "fragment-title-generator", "instructions": FRAGMENT_TITLE_PROMPT}
    if model:
        kwargs["model"] = model
    return Agent(**kwargs)


def create_response_agent(model: str | None = None) -> Agent:
    kwargs: dict[str, Any] = {"name": "response-generator", "instructions": RESPONSE_PROMPT}
    if model:
        kwargs["model"] = model
    return Agent(**kwargs)


class Synthesizer:
    """Derives the fragment title and user-facing reply from a task summary."""

    def __init__(
        self,
        title_agent: Agent,
        response_agent: Agent,
        runner: Any = Runner,
    ) -> None:
        self.title_agent = title_agent
        self.response_agent = response_agent
        self._runner = runner

    async def _generate(self, agent: Agent, summary: str, fallback: str) -> str:
        result = await self._runner.run(agent, input=summary)
        return parse_agent_output(result_messages(result), fallback)

    async def synthesize(self, summary: str, files: dict[str, str]) -> Synthesis:
        is_error = is_error_outcome(summary, files)
        if is_error:
            # Nothing to describe; the persisted message is the generic error
            return Synthesis(title=TITLE_FALLBACK, response=RESPONSE_FALLBACK, is_error=True)
        title, response = await asyncio.gather(
            self._generate(self.title_agent, summary, TITLE_FALLBACK),
            self._generate(self.response_agent, summary, RESPONSE_FALLBACK),
        )
        return Synthesis(title=title, response=response, is_error=False)
