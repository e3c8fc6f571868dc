import asyncio
import base64
import logging
import shlex
from typing import Any, Callable
from urllib.parse import urlparse

from pydantic import BaseModel
from vercel.sandbox import AsyncSandbox as Sandbox

from app_builder.errors import CommandError, SandboxError
from app_builder.sandbox.cache import SANDBOX_CACHE


logger = logging.getLogger("app_builder.sandbox")

OutputCallback = Callable[[str], None]


class CommandResult(BaseModel):
    exit_code: int | None
    stdout: str = ""
    stderr: str = ""


class SandboxHandle:
    """Session over one live sandbox: commands, files and preview host."""

    def __init__(self, sandbox: Sandbox) -> None:
        self._sandbox = sandbox

    @property
    def sandbox_id(self) -> str:
        return self._sandbox.sandbox_id

    @property
    def cwd(self) -> str:
        return self._sandbox.sandbox.cwd

    async def run(
        self,
        command: str,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ) -> CommandResult:
        """Run a shell command from the sandbox cwd, streaming output to the callbacks.

        Raises CommandError when the process exits non-zero.
        """
        cmd = await self._sandbox.run_command_detached(
            "bash",
            ["-lc", f"cd {self.cwd} && {command}"],
        )
        stdout: list[str] = []
        stderr: list[str] = []
        async for line in cmd.logs():
            data = line.data or ""
            if getattr(line, "stream", "stdout") == "stderr":
                stderr.append(data)
                if on_stderr:
                    on_stderr(data)
            else:
                stdout.append(data)
                if on_stdout:
                    on_stdout(data)
        done = await cmd.wait()
        result = CommandResult(
            exit_code=getattr(done, "exit_code", None),
            stdout="".join(stdout),
            stderr="".join(stderr),
        )
        if result.exit_code not in (0, None):
            raise CommandError(command, result.exit_code, result.stdout, result.stderr)
        return result

    async def start_process(
        self,
        command: str,
        ready_patterns: tuple[str, ...] = (),
        timeout_seconds: float = 120.0,
    ) -> bool:
        """Start a long-running command detached and wait until it looks ready.

        Returns True once a log line contains one of ``ready_patterns`` (or
        immediately when none are given). Returns False if the process exits
        or the timeout passes first; the process is left running either way.
        """
        cmd = await self._sandbox.run_command_detached(
            "bash",
            ["-lc", f"cd {self.cwd} && {command}"],
        )
        if not ready_patterns:
            return True

        async def _wait_ready() -> bool:
            async for line in cmd.logs():
                data = line.data or ""
                logger.debug("sandbox %s [%s] %s", self.sandbox_id, command, data.rstrip())
                if any(p in data for p in ready_patterns):
                    return True
            return False

        try:
            return await asyncio.wait_for(_wait_ready(), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "sandbox %s: %r not ready after %.0fs", self.sandbox_id, command, timeout_seconds
            )
            return False

    async def write_file(self, path: str, content: str) -> None:
        p = str(path).lstrip("/")
        await self._sandbox.write_files([{"path": p, "content": content.encode("utf-8")}])

    async def write_files(self, files: dict[str, str]) -> int:
        to_write = [
            {"path": str(p).lstrip("/"), "content": c.encode("utf-8")}
            for p, c in files.items()
            if str(p).lstrip("/")
        ]
        for i in range(0, len(to_write), 64):
            await self._sandbox.write_files(to_write[i : i + 64])
        return len(to_write)

    async def read_file(self, path: str) -> str:
        safe = shlex.quote(str(path))
        cmd = await self._sandbox.run_command(
            "bash",
            ["-lc", f"cd {self.cwd} && base64 {safe}"],
        )
        out = await cmd.stdout()
        exit_code = getattr(cmd, "exit_code", 0)
        if exit_code not in (0, None):
            raise CommandError(f"read {path}", exit_code, out or "", "")
        return base64.b64decode((out or "").strip()).decode("utf-8")

    def get_host(self, port: int) -> str:
        url = self._sandbox.domain(port)
        return urlparse(url).hostname or url

    async def close(self) -> None:
        try:
            await self._sandbox.client.aclose()
        except Exception:
            logger.debug("sandbox %s client close failed", self.sandbox_id, exc_info=True)


class SandboxProvider:
    """Creates sandboxes and reconnects to them by id."""

    def __init__(self, timeout_ms: int = 600_000, source_url: str | None = None) -> None:
        self._timeout_ms = timeout_ms
        self._source_url = source_url

    async def create(self, template: str, ports: list[int] | None = None) -> str:
        kwargs: dict[str, Any] = {"timeout": self._timeout_ms, "runtime": template, "ports": ports}
        if self._source_url:
            # Start from a git checkout of the app starter instead of an empty directory
            kwargs["source"] = {"type": "git", "url": self._source_url}
        try:
            sandbox = await Sandbox.create(**kwargs)
        except Exception as e:
            raise SandboxError(f"Failed to create sandbox ({template}): {e}") from e
        SANDBOX_CACHE[sandbox.sandbox_id] = sandbox
        logger.info("sandbox created id=%s template=%s ports=%s", sandbox.sandbox_id, template, ports)
        return sandbox.sandbox_id

    async def connect(self, sandbox_id: str) -> SandboxHandle:
        if sandbox_id in SANDBOX_CACHE:
            return SandboxHandle(SANDBOX_CACHE[sandbox_id])
        try:
            fetched = await Sandbox.get(sandbox_id=sandbox_id)
        except Exception as e:
            raise SandboxError(f"Failed to connect to sandbox {sandbox_id}: {e}") from e
        SANDBOX_CACHE[sandbox_id] = fetched
        return SandboxHandle(fetched)

    async def release(self, sandbox_id: str) -> None:
        """Drop the cached connection; the sandbox itself keeps serving until its timeout."""
        sandbox = SANDBOX_CACHE.pop(sandbox_id, None)
        if sandbox is not None:
            await SandboxHandle(sandbox).close()
