"""
bpm_portal/models.py
pydantic request models for portal endpoints.
Exports: ActivityEntry, TicketCreate, TicketPatch, SyncTicket, SyncSnapshot, SettingsUpdate, ChatMessage, PromptRequest
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _RequestModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ActivityEntry(_RequestModel):
    """Client-supplied activity log record; missing values are defaulted by the store."""

    action: str | None = None
    ticketId: str | None = None
    title: str | None = None
    time: str | None = None


class _TicketBody(_RequestModel):
    title: str | None = None
    description: str | None = None
    type: str | None = None
    priority: str | None = None
    status: str | None = None
    area: str | None = None
    subarea: str | None = None
    assignee: str | None = None
    files: str | None = None
    createdAt: str | None = None
    updatedAt: str | None = None
    activity: ActivityEntry | None = Field(default=None, alias="_activity")

    def ticket_fields(self) -> dict[str, Any]:
        """Return supplied ticket columns, dropping nulls and the activity side payload."""
        return self.model_dump(exclude_none=True, exclude={"activity"})


class TicketCreate(_TicketBody):
    """Body for POST /api/tickets."""

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)


class TicketPatch(_TicketBody):
    """Body for PUT /api/tickets/{id}; absent or null fields keep their stored value."""

    def ticket_fields(self) -> dict[str, Any]:
        fields = super().ticket_fields()
        fields.pop("createdAt", None)
        return fields


class SyncTicket(_TicketBody):
    """Ticket as carried in a full-sync snapshot."""

    id: str = Field(min_length=1)


class SyncSnapshot(_RequestModel):
    """Body for PUT /api/data (SQLite variant)."""

    tickets: list[SyncTicket] | None = None
    activity: list[ActivityEntry] | None = None


class SettingsUpdate(_RequestModel):
    """Body for PUT /api/settings; presence of a key field matters, see `model_fields_set`."""

    theme: str | None = None
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None


class ChatMessage(_RequestModel):
    role: str
    content: Any = ""


class PromptRequest(_RequestModel):
    """Body for POST /api/ai/prompt."""

    provider: str | None = None
    model: str | None = None
    system: str | None = None
    messages: list[ChatMessage] | None = None
    apiKey: str | None = None
