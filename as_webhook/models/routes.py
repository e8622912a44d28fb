"""Routing configuration models."""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

DEFAULT_METHOD = "POST"
DEFAULT_SELECTOR = "true"


class Route(BaseModel):
    """Single routing rule.

    Defaults are applied on validation, so a loaded route is always complete:
    method ``POST``, catch-all selector ``true``, name taken from the
    destination URL and ``send_body`` enabled.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    selector: str = Field(description="Selector expression over `event`")
    destination_url: str = Field(
        validation_alias=AliasChoices("webhook_url", "destination_url"),
        description="Webhook URL receiving the delivery",
    )
    method: str = DEFAULT_METHOD
    stop_on_match: bool = False
    send_body: bool = True
    shared_secret: str | None = None

    @model_validator(mode="before")
    @classmethod
    def apply_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        url = data.get("webhook_url") or data.get("destination_url") or ""
        data["method"] = (data.get("method") or DEFAULT_METHOD).upper()
        data["selector"] = (data.get("selector") or "").strip() or DEFAULT_SELECTOR
        data["name"] = data.get("name") or url
        if data.get("send_body") is None:
            data["send_body"] = True
        if data.get("stop_on_match") is None:
            data["stop_on_match"] = False
        if not data.get("shared_secret"):
            data["shared_secret"] = None
        return data


class RoutesConfig(BaseModel):
    """Complete routing configuration."""

    routes: list[Route] = Field(default_factory=list)

    @classmethod
    def default(cls) -> "RoutesConfig":
        """Empty route table used when no configuration could be loaded."""
        return cls(routes=[])
