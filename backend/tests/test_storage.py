import sqlite3

import pytest

from app_builder.errors import FragmentNotFound, ProjectNotFound
from app_builder.models import FragmentInput, MessageRole, MessageType
from app_builder.storage import MemoryMessageStore, SQLiteMessageStore, make_project_name


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryMessageStore()
    return SQLiteMessageStore(tmp_path / "app.db")


def test_project_name_is_two_word_slug():
    name = make_project_name()
    assert len(name.split("-")) == 2


@pytest.mark.asyncio
async def test_create_project_seeds_user_prompt(any_store):
    project = await any_store.create_project("Build a todo app")

    messages = await any_store.list_messages(project.id)

    assert len(messages) == 1
    assert messages[0].role == MessageRole.USER
    assert messages[0].type == MessageType.RESULT
    assert messages[0].content == "Build a todo app"


@pytest.mark.asyncio
async def test_recent_messages_skip_errors_and_stay_chronological(any_store):
    project = await any_store.create_project("first")
    await any_store.create_result_message(project.id, "oops", MessageType.ERROR)
    await any_store.add_user_message(project.id, "second")
    await any_store.add_user_message(project.id, "third")

    recent = await any_store.recent_messages(project.id, 2)

    assert [m.content for m in recent] == ["second", "third"]


@pytest.mark.asyncio
async def test_result_message_with_fragment_round_trips(any_store):
    project = await any_store.create_project("Build a todo app")
    files = {"app/page.tsx": "export default function Page() {}"}

    message = await any_store.create_result_message(
        project.id,
        "Here's your app",
        MessageType.RESULT,
        fragment=FragmentInput(sandbox_url="https://a.vercel.run", title="Todo App", files=files),
    )

    stored = (await any_store.list_messages(project.id))[-1]
    assert stored.id == message.id
    assert stored.role == MessageRole.ASSISTANT
    assert stored.fragment is not None
    assert stored.fragment.files == files
    assert stored.fragment.title == "Todo App"


@pytest.mark.asyncio
async def test_result_message_is_idempotent_per_run(any_store):
    project = await any_store.create_project("Build a todo app")

    first = await any_store.create_result_message(project.id, "done", MessageType.RESULT, run_id="evt_1")
    second = await any_store.create_result_message(project.id, "done", MessageType.RESULT, run_id="evt_1")

    assert first.id == second.id
    assistant = [m for m in await any_store.list_messages(project.id) if m.role == MessageRole.ASSISTANT]
    assert len(assistant) == 1


@pytest.mark.asyncio
async def test_update_fragment_url(any_store):
    project = await any_store.create_project("Build a todo app")
    message = await any_store.create_result_message(
        project.id,
        "ok",
        MessageType.RESULT,
        fragment=FragmentInput(sandbox_url="https://old.vercel.run", title="T", files={"a": "b"}),
    )

    updated = await any_store.update_fragment_url(message.fragment.id, "https://new.vercel.run")

    assert updated.sandbox_url == "https://new.vercel.run"
    assert (await any_store.get_fragment(message.fragment.id)).sandbox_url == "https://new.vercel.run"


@pytest.mark.asyncio
async def test_missing_project_and_fragment(any_store):
    with pytest.raises(ProjectNotFound):
        await any_store.get_project("prj_missing")
    with pytest.raises(ProjectNotFound):
        await any_store.add_user_message("prj_missing", "hi")
    with pytest.raises(FragmentNotFound):
        await any_store.get_fragment("frg_missing")


@pytest.mark.asyncio
async def test_delete_project_removes_messages(any_store):
    project = await any_store.create_project("Build a todo app")
    await any_store.delete_project(project.id)

    assert await any_store.list_projects() == []
    with pytest.raises(ProjectNotFound):
        await any_store.list_messages(project.id)


class TrackingConnection(sqlite3.Connection):
    opened = 0
    closed = 0

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        TrackingConnection.opened += 1

    def close(self):
        TrackingConnection.closed += 1
        super().close()


@pytest.mark.asyncio
async def test_sqlite_store_closes_every_connection(tmp_path, monkeypatch):
    connect = sqlite3.connect
    monkeypatch.setattr(sqlite3, "connect", lambda path: connect(path, factory=TrackingConnection))
    TrackingConnection.opened = TrackingConnection.closed = 0
    store = SQLiteMessageStore(tmp_path / "app.db")

    project = await store.create_project("Build a todo app")
    await store.list_messages(project.id)
    with pytest.raises(ProjectNotFound):
        await store.get_project("prj_missing")

    assert TrackingConnection.opened >= 3
    assert TrackingConnection.closed == TrackingConnection.opened
