import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app_builder.agent.network import Network, create_code_agent
from app_builder.agent.synthesizer import Synthesizer, create_response_agent, create_title_agent
from app_builder.agent.tools import ToolSet, build_function_tools
from app_builder.config import Settings, configure_logging, configure_openai, load_settings
from app_builder.errors import FragmentNotFound, PersistenceError, ProjectNotFound
from app_builder.run_store import (
    CheckpointStore,
    MemoryCheckpointStore,
    RuntimeCacheCheckpointStore,
)
from app_builder.sandbox.handle import SandboxProvider
from app_builder.storage.base import MessageStore
from app_builder.storage.sqlite import SQLiteMessageStore
from app_builder.workflow.orchestrator import CodeAgentWorkflow
from app_builder.workflow.runner import WorkflowRunner

from . import fragments, projects, runs


logger = logging.getLogger("app_builder.api")


def build_checkpoint_store(settings: Settings) -> CheckpointStore:
    if settings.run_store_backend == "memory":
        return MemoryCheckpointStore()
    return RuntimeCacheCheckpointStore(
        namespace=settings.run_store_namespace,
        ttl_seconds=settings.run_store_ttl_seconds,
    )


def build_workflow(
    settings: Settings,
    store: MessageStore,
    checkpoints: CheckpointStore,
    sandboxes: SandboxProvider,
) -> CodeAgentWorkflow:
    def network_factory(toolset: ToolSet) -> Network:
        agent = create_code_agent(build_function_tools(toolset), settings.agent_model)
        return Network(
            agent,
            max_iterations=settings.agent_max_iterations,
            max_turns=settings.agent_max_turns,
        )

    synthesizer = Synthesizer(
        create_title_agent(settings.agent_model),
        create_response_agent(settings.agent_model),
    )
    return CodeAgentWorkflow(
        settings=settings,
        store=store,
        checkpoints=checkpoints,
        sandboxes=sandboxes,
        network_factory=network_factory,
        synthesizer=synthesizer,
    )


def create_app(
    settings: Settings | None = None,
    *,
    store: MessageStore | None = None,
    sandboxes: SandboxProvider | None = None,
    runner: WorkflowRunner | None = None,
) -> FastAPI:
    """Assemble the FastAPI app; collaborators may be injected (tests, alt backends)."""
    settings = settings or load_settings()
    store = store or SQLiteMessageStore(settings.database_path)
    sandboxes = sandboxes or SandboxProvider(
        timeout_ms=settings.sandbox_timeout_ms, source_url=settings.sandbox_source_url
    )
    if runner is None:
        configure_openai(settings)
        workflow = build_workflow(settings, store, build_checkpoint_store(settings), sandboxes)
        runner = WorkflowRunner(
            workflow,
            max_attempts=settings.run_max_attempts,
            serialize_projects=settings.serialize_project_runs,
            history_limit=settings.run_history_limit,
        )

    app = FastAPI(title="App Builder")
    app.state.settings = settings
    app.state.store = store
    app.state.sandboxes = sandboxes
    app.state.runner = runner

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ProjectNotFound)
    async def _project_not_found(request: Request, exc: ProjectNotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(FragmentNotFound)
    async def _fragment_not_found(request: Request, exc: FragmentNotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(PersistenceError)
    async def _persistence_error(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("persistence error on %s: %s", request.url.path, str(exc))
        return JSONResponse(status_code=500, content={"detail": "Storage error"})

    app.include_router(projects.router)
    app.include_router(runs.router)
    app.include_router(fragments.router)

    @app.get("/")
    def read_root():
        return {"Hello": "App Builder"}

    configure_logging()
    return app


__all__ = ["build_checkpoint_store", "build_workflow", "create_app"]
