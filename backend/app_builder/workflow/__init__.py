from .history import LoadedContext, build_context, load_context
from .orchestrator import CodeAgentWorkflow
from .runner import RunRecord, WorkflowRunner

__all__ = [
    "CodeAgentWorkflow",
    "LoadedContext",
    "RunRecord",
    "WorkflowRunner",
    "build_context",
    "load_context",
]
