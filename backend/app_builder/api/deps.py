from fastapi import Request

from app_builder.config import Settings
from app_builder.sandbox.handle import SandboxProvider
from app_builder.storage.base import MessageStore
from app_builder.workflow.runner import WorkflowRunner


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> MessageStore:
    return request.app.state.store


def get_runner(request: Request) -> WorkflowRunner:
    return request.app.state.runner


def get_sandboxes(request: Request) -> SandboxProvider:
    return request.app.state.sandboxes
