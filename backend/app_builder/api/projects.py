import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app_builder.api.deps import get_runner, get_store
from app_builder.models import Message, Project, RunEventData, TriggerEvent
from app_builder.storage.base import MessageStore
from app_builder.workflow.runner import WorkflowRunner


logger = logging.getLogger("app_builder.api.projects")


router = APIRouter(prefix="/api/projects", tags=["projects"])


class PromptRequest(BaseModel):
    """User prompt describing the app to build or the change to make."""

    value: str = Field(..., min_length=1, max_length=10_000)


def send_run_event(
    runner: WorkflowRunner, project_id: str, value: str, message_id: str | None = None
) -> str:
    event = TriggerEvent(
        data=RunEventData(value=value, project_id=project_id, message_id=message_id)
    )
    return runner.trigger(event).run_id


@router.post("")
async def create_project(
    request: PromptRequest,
    store: MessageStore = Depends(get_store),
    runner: WorkflowRunner = Depends(get_runner),
) -> dict[str, Any]:
    project = await store.create_project(request.value)
    seed = (await store.list_messages(project.id))[0]
    run_id = send_run_event(runner, project.id, request.value, seed.id)
    logger.info("create_project[%s] name=%s run=%s", project.id, project.name, run_id)
    return {"project": project.model_dump(mode="json"), "run_id": run_id}


@router.get("")
async def list_projects(store: MessageStore = Depends(get_store)) -> list[Project]:
    return await store.list_projects()


@router.get("/{project_id}")
async def get_project(project_id: str, store: MessageStore = Depends(get_store)) -> Project:
    return await store.get_project(project_id)


@router.delete("/{project_id}")
async def delete_project(project_id: str, store: MessageStore = Depends(get_store)) -> dict[str, Any]:
    await store.delete_project(project_id)
    return {"success": True}


@router.post("/{project_id}/messages")
async def create_message(
    project_id: str,
    request: PromptRequest,
    store: MessageStore = Depends(get_store),
    runner: WorkflowRunner = Depends(get_runner),
) -> dict[str, Any]:
    message = await store.add_user_message(project_id, request.value)
    run_id = send_run_event(runner, project_id, request.value, message.id)
    logger.info("create_message[%s] project=%s run=%s", message.id, project_id, run_id)
    return {"message": message.model_dump(mode="json"), "run_id": run_id}


@router.get("/{project_id}/messages")
async def list_messages(project_id: str, store: MessageStore = Depends(get_store)) -> list[Message]:
    return await store.list_messages(project_id)
