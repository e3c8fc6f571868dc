import asyncio
import logging
from typing import Any

from app_builder.config import Settings
from app_builder.errors import CommandError, SandboxError
from app_builder.sandbox.handle import SandboxHandle, SandboxProvider
from app_builder.storage.base import MessageStore


logger = logging.getLogger("app_builder.sandbox.utils")


def preview_url(host: str) -> str:
    return f"https://{host}"


async def sync_files_with_retry(
    sandbox: SandboxHandle, files: dict[str, str], attempts: int = 3, backoff_seconds: float = 0.25
) -> int:
    """Write a file map into the sandbox, backing off on transient errors."""
    attempt = 0
    while True:
        try:
            return await sandbox.write_files(files)
        except Exception as e:
            attempt += 1
            if attempt > attempts:
                raise
            logger.warning(
                "sandbox %s file sync retry %d/%d: %s", sandbox.sandbox_id, attempt, attempts, str(e)
            )
            await asyncio.sleep(backoff_seconds * (2 ** (attempt - 1)))


async def start_app(sandbox: SandboxHandle, files: dict[str, str], settings: Settings) -> None:
    """Scaffold the app, lay ``files`` over it, install and start the dev server.

    Raises SandboxError when a setup command fails or the dev server never
    reports ready on ``settings.sandbox_port``.
    """
    try:
        await sandbox.run(settings.sandbox_bootstrap_command)
        if files:
            await sync_files_with_retry(sandbox, files)
        await sandbox.run(settings.sandbox_install_command)
    except CommandError as e:
        raise SandboxError(
            f"App setup failed in sandbox {sandbox.sandbox_id}: {e}\n{e.stderr[-2000:]}"
        ) from e
    ready = await sandbox.start_process(
        settings.sandbox_dev_command,
        ready_patterns=settings.sandbox_ready_patterns,
        timeout_seconds=settings.sandbox_ready_timeout_seconds,
    )
    if not ready:
        raise SandboxError(
            f"Dev server in sandbox {sandbox.sandbox_id} did not become ready on port {settings.sandbox_port}"
        )
    logger.info("sandbox %s dev server ready (%d files synced)", sandbox.sandbox_id, len(files))


async def restore_fragment(
    store: MessageStore,
    sandboxes: SandboxProvider,
    fragment_id: str,
    settings: Settings,
) -> dict[str, Any]:
    """Revive a fragment's preview in a fresh sandbox and record the new URL."""
    fragment = await store.get_fragment(fragment_id)
    sandbox_id = await sandboxes.create(settings.sandbox_template, ports=[settings.sandbox_port])
    try:
        sandbox = await sandboxes.connect(sandbox_id)
        await start_app(sandbox, fragment.files, settings)
        url = preview_url(sandbox.get_host(settings.sandbox_port))
    finally:
        await sandboxes.release(sandbox_id)
    await store.update_fragment_url(fragment_id, url)
    logger.info("fragment %s restored into sandbox %s (%d files)", fragment_id, sandbox_id, len(fragment.files))
    return {"success": True, "sandboxUrl": url, "sandboxId": sandbox_id}
