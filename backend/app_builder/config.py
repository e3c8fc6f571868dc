import os
import logging

from dotenv import load_dotenv
from pydantic import BaseModel
from openai import AsyncOpenAI
from agents import (
    set_default_openai_client,
    set_default_openai_api,
    set_tracing_disabled,
)

current_dir = os.path.dirname(os.path.abspath(__file__))
root_dir = os.path.dirname(current_dir)
# Load env from backend/.env first, then fallback to app_builder/.env without overriding
load_dotenv(os.path.join(root_dir, ".env"), override=False)
load_dotenv(os.path.join(current_dir, ".env"), override=False)


"""Runtime configuration.

Model access goes through either:
- AI Gateway: provide AI_GATEWAY_API_KEY or VERCEL_OIDC_TOKEN.
- OpenAI: provide OPENAI_API_KEY (and optionally OPENAI_BASE_URL).
"""

logger = logging.getLogger("app_builder.config")

DEFAULT_GATEWAY_URL = "https://ai-gateway.vercel.sh/v1"

# Scaffold only when the sandbox does not already hold an app (e.g. a git starter)
DEFAULT_BOOTSTRAP_COMMAND = (
    "[ -f package.json ] || npx --yes create-next-app@15 . --ts --tailwind --eslint --app "
    "--no-src-dir --import-alias '@/*' --use-npm --yes"
)
DEFAULT_READY_PATTERNS = ("Ready in", "Local:", "started server on")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Settings for the code agent workflow and its HTTP surface."""

    sandbox_template: str = "node22"
    sandbox_port: int = 3000
    sandbox_timeout_ms: int = 600_000
    sandbox_source_url: str | None = None
    sandbox_bootstrap_command: str = DEFAULT_BOOTSTRAP_COMMAND
    sandbox_install_command: str = "npm install --no-audit --no-fund --loglevel error"
    sandbox_dev_command: str = "npm run dev -- --hostname 0.0.0.0 --port 3000"
    sandbox_ready_patterns: tuple[str, ...] = DEFAULT_READY_PATTERNS
    sandbox_ready_timeout_seconds: float = 180.0

    agent_model: str = "openai/gpt-4.1"
    agent_max_iterations: int = 10
    agent_max_turns: int = 10
    history_limit: int = 30

    run_store_backend: str = "runtime-cache"
    run_store_namespace: str = "code-agent-runs"
    run_store_ttl_seconds: int = 86_400
    run_max_attempts: int = 3
    serialize_project_runs: bool = True
    run_history_limit: int = 200

    database_path: str = "data/app.db"

    api_key: str | None = None
    base_url: str = DEFAULT_GATEWAY_URL


def load_settings() -> Settings:
    """Build settings from the process environment."""
    return Settings(
        sandbox_template=os.getenv("SANDBOX_TEMPLATE", "node22"),
        sandbox_port=int(os.getenv("SANDBOX_PORT", "3000")),
        sandbox_timeout_ms=int(os.getenv("SANDBOX_TIMEOUT_MS", "600000")),
        sandbox_source_url=os.getenv("SANDBOX_SOURCE_URL") or None,
        sandbox_bootstrap_command=os.getenv("SANDBOX_BOOTSTRAP_COMMAND", DEFAULT_BOOTSTRAP_COMMAND),
        sandbox_install_command=os.getenv(
            "SANDBOX_INSTALL_COMMAND", "npm install --no-audit --no-fund --loglevel error"
        ),
        sandbox_dev_command=os.getenv(
            "SANDBOX_DEV_COMMAND",
            f"npm run dev -- --hostname 0.0.0.0 --port {os.getenv('SANDBOX_PORT', '3000')}",
        ),
        sandbox_ready_timeout_seconds=float(os.getenv("SANDBOX_READY_TIMEOUT_SECONDS", "180")),
        agent_model=os.getenv("AGENT_MODEL", "openai/gpt-4.1"),
        agent_max_iterations=int(os.getenv("AGENT_MAX_ITERATIONS", "10")),
        agent_max_turns=int(os.getenv("AGENT_MAX_TURNS", "10")),
        history_limit=int(os.getenv("HISTORY_LIMIT", "30")),
        run_store_backend=os.getenv("RUN_STORE_BACKEND", "runtime-cache"),
        run_store_namespace=os.getenv("RUN_STORE_NAMESPACE", "code-agent-runs"),
        run_store_ttl_seconds=int(os.getenv("RUN_STORE_TTL_SECONDS", "86400")),
        run_max_attempts=int(os.getenv("RUN_MAX_ATTEMPTS", "3")),
        serialize_project_runs=_env_bool("SERIALIZE_PROJECT_RUNS", True),
        run_history_limit=int(os.getenv("RUN_HISTORY_LIMIT", "200")),
        database_path=os.getenv("DATABASE_PATH", "data/app.db"),
        api_key=(
            os.getenv("AI_GATEWAY_API_KEY")
            or os.getenv("VERCEL_OIDC_TOKEN")
            or os.getenv("OPENAI_API_KEY")
        ),
        base_url=(
            os.getenv("AI_GATEWAY_BASE_URL")
            or os.getenv("OPENAI_BASE_URL")
            or DEFAULT_GATEWAY_URL
        ),
    )


def configure_openai(settings: Settings) -> AsyncOpenAI:
    """Install the gateway client as the Agents SDK default."""
    client = AsyncOpenAI(api_key=settings.api_key, base_url=settings.base_url)
    set_default_openai_client(client, use_for_tracing=False)
    set_default_openai_api("chat_completions")
    set_tracing_disabled(True)
    logger.info("openai client configured base_url=%s model=%s", settings.base_url, settings.agent_model)
    return client


def configure_logging(level: int = logging.INFO) -> None:
    # Inherit uvicorn handlers when present; otherwise log to stderr
    app_logger = logging.getLogger("app_builder")
    app_logger.setLevel(level)
    if not app_logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        app_logger.addHandler(handler)
