"""Application service registration file generation."""

import os
import secrets
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

DEFAULT_REGISTRATION_ID = "matrix-as-webhook"


class Namespace(BaseModel):
    exclusive: bool
    regex: str


class Namespaces(BaseModel):
    users: list[Namespace] = Field(default_factory=list)
    aliases: list[Namespace] = Field(default_factory=list)
    rooms: list[Namespace] = Field(default_factory=list)


class Registration(BaseModel):
    """Registration descriptor handed to the homeserver."""

    id: str
    url: str
    as_token: str
    hs_token: str
    rate_limited: bool = False
    namespaces: Namespaces = Field(default_factory=Namespaces)


def generate_token() -> str:
    """Random 32-byte token, hex encoded."""
    return secrets.token_hex(32)


def generate_registration(
    server_url: str,
    as_token: str | None = None,
    registration_id: str = DEFAULT_REGISTRATION_ID,
) -> Registration:
    """Build a registration; a missing AS token is generated."""
    return Registration(
        id=registration_id,
        url=server_url,
        as_token=as_token or generate_token(),
        hs_token=generate_token(),
    )


def write_registration(registration: Registration, path: str | Path) -> Path:
    """Write the registration as YAML, readable by the owner only."""
    path = Path(path)
    if path.parent != Path("."):
        path.parent.mkdir(parents=True, exist_ok=True)

    data = registration.model_dump()
    # empty namespace lists are omitted
    data["namespaces"] = registration.namespaces.model_dump(exclude_defaults=True)
    text = yaml.safe_dump(data, sort_keys=False)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(text)
    os.chmod(path, 0o600)
    return path
