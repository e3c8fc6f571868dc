from vercel.sandbox import AsyncSandbox as Sandbox


# Live sandbox clients for this process, keyed by sandbox id. Never persisted:
# a step that runs after a restart reconnects by id.
SANDBOX_CACHE: dict[str, Sandbox] = {}
