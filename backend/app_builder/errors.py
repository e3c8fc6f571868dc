class AppBuilderError(Exception):
    """Base error for the app builder backend."""


class SandboxError(AppBuilderError):
    """Sandbox could not be provisioned or reached."""


class CommandError(AppBuilderError):
    """A sandbox command exited with a non-zero status."""

    def __init__(self, command: str, exit_code: int | None, stdout: str = "", stderr: str = "") -> None:
        super().__init__(f"`{command}` exited with code {exit_code}")
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class StepError(AppBuilderError):
    """A durable workflow step raised; the result was not checkpointed."""

    def __init__(self, run_id: str, step_id: str, cause: BaseException) -> None:
        super().__init__(f"step {step_id!r} of run {run_id} failed: {cause}")
        self.run_id = run_id
        self.step_id = step_id
        self.cause = cause


class PersistenceError(AppBuilderError):
    """The message store rejected a read or write."""


class ProjectNotFound(AppBuilderError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class FragmentNotFound(AppBuilderError):
    def __init__(self, fragment_id: str) -> None:
        super().__init__(f"Fragment not found: {fragment_id}")
        self.fragment_id = fragment_id
