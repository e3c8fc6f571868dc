from pydantic import BaseModel, Field

from app_builder.models import Message, MessageRole
from app_builder.storage.base import MessageStore


class LoadedContext(BaseModel):
    formatted_messages: list[dict[str, str]] = Field(default_factory=list)
    latest_files: dict[str, str] = Field(default_factory=dict)


def build_context(messages: list[Message]) -> LoadedContext:
    """Turn stored turns (oldest first) into agent history plus the latest file map.

    Fragment files are folded forward in order, so a later turn's version of
    a path replaces an earlier one.
    """
    formatted: list[dict[str, str]] = []
    latest_files: dict[str, str] = {}
    for message in messages:
        content = message.content
        if message.role == MessageRole.ASSISTANT and message.fragment is not None:
            files = message.fragment.files or {}
            latest_files.update(files)
            if files:
                content = f"{content}\n\n[Files created/modified: {', '.join(files.keys())}]"
        formatted.append(
            {
                "role": "assistant" if message.role == MessageRole.ASSISTANT else "user",
                "content": content,
            }
        )
    return LoadedContext(formatted_messages=formatted, latest_files=latest_files)


def _without_trigger(
    messages: list[Message], prompt: str | None, message_id: str | None
) -> list[Message]:
    """Drop the stored copy of the prompt that triggered this run.

    Matched by id when the trigger carries one; otherwise the newest USER turn
    with the same text. Replies from earlier runs may have landed after it.
    """
    if message_id:
        return [m for m in messages if m.id != message_id]
    if prompt is None:
        return messages
    for idx in range(len(messages) - 1, -1, -1):
        m = messages[idx]
        if m.role == MessageRole.USER and m.content == prompt:
            return messages[:idx] + messages[idx + 1 :]
    return messages


async def load_context(
    store: MessageStore,
    project_id: str,
    limit: int = 30,
    *,
    prompt: str | None = None,
    message_id: str | None = None,
) -> LoadedContext:
    """Up to ``limit`` prior turns, excluding the triggering prompt itself."""
    if limit <= 0:
        return LoadedContext()
    # One extra so removing the trigger still leaves ``limit`` turns
    messages = await store.recent_messages(project_id, limit + 1)
    messages = _without_trigger(messages, prompt, message_id)
    return build_context(messages[-limit:])
