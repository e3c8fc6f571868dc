from typing import Any
from pydantic import BaseModel, Field


class AgentState(BaseModel):
    """State container for one agent network run.

    Attributes:
        sandbox_id: Id of the sandbox owned by this run.
        summary: Final task summary; empty until the agent signals completion.
        files: Mapping of file paths to file contents (latest known state).
        events: Structured tool events accumulated during a run.
    """

    sandbox_id: str
    summary: str = ""
    files: dict[str, str] = Field(default_factory=dict)
    events: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def done(self) -> bool:
        return bool(self.summary)

    def apply(self, delta: dict[str, str]) -> None:
        """Fold a file delta into the state; later writes win, nothing is removed."""
        self.files.update(delta)
