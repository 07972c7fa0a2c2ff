"""Search streaming request models."""

from pydantic import BaseModel, Field

from src.config.modes import SearchMode
from src.workflow.state import ChatTurn, SearchRequest


class HistoryMessage(BaseModel):
    """Prior conversation message."""

    role: str = Field(..., description="Message author role (user or assistant)")
    content: str = Field(..., description="Message text")


class SearchStreamRequest(BaseModel):
    """Search request streamed back as server-sent events."""

    query: str = Field(..., min_length=1, description="User query")
    history: list[HistoryMessage] = Field(default_factory=list, description="Prior conversation turns")
    mode: str = Field(default="quick", description="Search mode: quick, pro or ultra")
    file_ids: list[str] = Field(default_factory=list, description="Attachment identifiers")
    system_instructions: str | None = Field(default=None, description="Extra instructions for the answer")
    user_tier: str | None = Field(default=None, description="Caller tier used for prioritization")

    def to_search_request(self) -> SearchRequest:
        return SearchRequest(
            query=self.query,
            history=tuple(ChatTurn(role=msg.role, content=msg.content) for msg in self.history),
            mode=SearchMode.from_string(self.mode),
            file_ids=tuple(self.file_ids),
            system_instructions=self.system_instructions,
            user_tier=self.user_tier,
        )


class ModeInfo(BaseModel):
    """Available search mode."""

    mode: str
    description: str
    maxSources: int
