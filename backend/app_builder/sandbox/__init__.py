from .handle import CommandResult, SandboxHandle, SandboxProvider
from .utils import preview_url, restore_fragment, start_app, sync_files_with_retry

__all__ = [
    "CommandResult",
    "SandboxHandle",
    "SandboxProvider",
    "preview_url",
    "restore_fragment",
    "start_app",
    "sync_files_with_retry",
]
