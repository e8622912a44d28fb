"""Matrix event envelope received from the homeserver.

Events are pushed in transactions; only the fields the router and the
delivery payload need are modelled, everything else in ``content`` is kept
as-is.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

MESSAGE_EVENT_TYPE = "m.room.message"


class MatrixEvent(BaseModel):
    """A single Matrix room event."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, strict=True)

    type: str = Field(default="", description="Event type, e.g. m.room.message")
    event_id: str = Field(default="")
    room_id: str = Field(default="")
    sender: str = Field(default="")
    timestamp: int = Field(
        default=0,
        alias="origin_server_ts",
        description="Origin server timestamp in milliseconds",
    )
    content: dict[str, Any] = Field(default_factory=dict, description="Arbitrary event content")

    @property
    def body(self) -> str | None:
        """Textual message body, if the content carries one."""
        body = self.content.get("body")
        return body if isinstance(body, str) else None

    def to_selector_input(self) -> dict[str, Any]:
        """Wire representation of the event, as seen by selectors."""
        return self.model_dump(by_alias=True)


class Transaction(BaseModel):
    """An ordered batch of events pushed in one request."""

    events: list[MatrixEvent] = Field(default_factory=list)
