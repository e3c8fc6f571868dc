import random
from typing import Protocol

from app_builder.models import (
    Fragment,
    FragmentInput,
    Message,
    MessageType,
    Project,
)


_ADJECTIVES = [
    "swift", "happy", "quiet", "bright", "bold", "calm", "eager", "fancy",
    "gentle", "lucky", "merry", "nimble", "proud", "rapid", "sunny", "witty",
]
_NOUNS = [
    "cloud", "tiger", "river", "falcon", "maple", "comet", "harbor", "meadow",
    "otter", "pixel", "canyon", "ember", "lagoon", "orbit", "sparrow", "willow",
]


def make_project_name(rng: random.Random | None = None) -> str:
    """Two-word kebab slug, e.g. ``swift-cloud``."""
    r = rng or random
    return f"{r.choice(_ADJECTIVES)}-{r.choice(_NOUNS)}"


class MessageStore(Protocol):
    """Durable storage for projects, messages and fragments."""

    async def create_project(self, prompt: str, name: str | None = None) -> Project:
        """Create a project together with its initial USER message."""
        ...

    async def get_project(self, project_id: str) -> Project:
        ...

    async def list_projects(self) -> list[Project]:
        ...

    async def delete_project(self, project_id: str) -> None:
        ...

    async def add_user_message(self, project_id: str, content: str) -> Message:
        ...

    async def list_messages(self, project_id: str) -> list[Message]:
        ...

    async def recent_messages(self, project_id: str, limit: int) -> list[Message]:
        """Newest ``limit`` non-ERROR messages, returned oldest-first."""
        ...

    async def create_result_message(
        self,
        project_id: str,
        content: str,
        type: MessageType,
        fragment: FragmentInput | None = None,
        run_id: str | None = None,
    ) -> Message:
        """Insert one ASSISTANT message (and its fragment) atomically.

        When ``run_id`` is given and a message was already stored for it, the
        existing message is returned instead of inserting a second one.
        """
        ...

    async def get_fragment(self, fragment_id: str) -> Fragment:
        ...

    async def update_fragment_url(self, fragment_id: str, sandbox_url: str) -> Fragment:
        ...
