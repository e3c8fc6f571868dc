import asyncio
import uuid

from app_builder.errors import FragmentNotFound, ProjectNotFound
from app_builder.models import (
    Fragment,
    FragmentInput,
    Message,
    MessageRole,
    MessageType,
    Project,
)
from app_builder.storage.base import make_project_name


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class MemoryMessageStore:
    """In-process store used by tests and local development."""

    def __init__(self) -> None:
        self._projects: dict[str, Project] = {}
        self._messages: dict[str, list[Message]] = {}
        self._by_run: dict[str, Message] = {}
        self._lock = asyncio.Lock()

    async def create_project(self, prompt: str, name: str | None = None) -> Project:
        project = Project(id=_new_id("prj"), name=name or make_project_name())
        self._projects[project.id] = project
        self._messages[project.id] = []
        await self.add_user_message(project.id, prompt)
        return project

    async def get_project(self, project_id: str) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFound(project_id)
        return project

    async def list_projects(self) -> list[Project]:
        return sorted(self._projects.values(), key=lambda p: p.created_at, reverse=True)

    async def delete_project(self, project_id: str) -> None:
        await self.get_project(project_id)
        del self._projects[project_id]
        for message in self._messages.pop(project_id, []):
            self._by_run = {k: v for k, v in self._by_run.items() if v.id != message.id}

    async def add_user_message(self, project_id: str, content: str) -> Message:
        await self.get_project(project_id)
        message = Message(
            id=_new_id("msg"),
            project_id=project_id,
            role=MessageRole.USER,
            type=MessageType.RESULT,
            content=content,
        )
        self._messages[project_id].append(message)
        return message

    async def list_messages(self, project_id: str) -> list[Message]:
        await self.get_project(project_id)
        return [m.model_copy(deep=True) for m in self._messages[project_id]]

    async def recent_messages(self, project_id: str, limit: int) -> list[Message]:
        await self.get_project(project_id)
        kept = [m for m in self._messages[project_id] if m.type != MessageType.ERROR]
        return [m.model_copy(deep=True) for m in kept[-limit:]] if limit > 0 else []

    async def create_result_message(
        self,
        project_id: str,
        content: str,
        type: MessageType,
        fragment: FragmentInput | None = None,
        run_id: str | None = None,
    ) -> Message:
        async with self._lock:
            if run_id and run_id in self._by_run:
                return self._by_run[run_id].model_copy(deep=True)
            await self.get_project(project_id)
            message_id = _new_id("msg")
            message = Message(
                id=message_id,
                project_id=project_id,
                role=MessageRole.ASSISTANT,
                type=type,
                content=content,
                fragment=(
                    Fragment(id=_new_id("frg"), message_id=message_id, **fragment.model_dump())
                    if fragment is not None
                    else None
                ),
            )
            self._messages[project_id].append(message)
            if run_id:
                self._by_run[run_id] = message
            return message.model_copy(deep=True)

    def _find_fragment(self, fragment_id: str) -> Fragment:
        for messages in self._messages.values():
            for message in messages:
                if message.fragment is not None and message.fragment.id == fragment_id:
                    return message.fragment
        raise FragmentNotFound(fragment_id)

    async def get_fragment(self, fragment_id: str) -> Fragment:
        return self._find_fragment(fragment_id).model_copy(deep=True)

    async def update_fragment_url(self, fragment_id: str, sandbox_url: str) -> Fragment:
        fragment = self._find_fragment(fragment_id)
        fragment.sandbox_url = sandbox_url
        return fragment.model_copy(deep=True)
