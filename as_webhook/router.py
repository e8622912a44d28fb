"""Event routing based on selector expressions."""

import json
import logging
import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict

from as_webhook.models.routes import DEFAULT_METHOD, Route, RoutesConfig
from as_webhook.selector import (
    CompiledSelector,
    SelectorCompileError,
    SelectorEvalError,
    compile_selector,
)

logger = logging.getLogger(__name__)


class ResolveError(ValueError):
    """Raised when an event cannot be represented as JSON for routing."""


def load_routes_config(config_path: str | Path) -> RoutesConfig:
    """Load routing configuration from a TOML or YAML file."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Routes config not found: {path}")

    if path.suffix == ".toml":
        with open(path, "rb") as f:
            data = tomllib.load(f)
    else:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    return RoutesConfig.model_validate(data)


class Target(BaseModel):
    """A matched route, instantiated for one event."""

    model_config = ConfigDict(frozen=True)

    name: str
    url: str
    method: str = DEFAULT_METHOD
    send_body: bool = True
    stop_on_match: bool = False
    shared_secret: str | None = None

    @classmethod
    def from_route(cls, route: Route) -> "Target":
        return cls(
            name=route.name,
            url=route.destination_url,
            method=route.method or DEFAULT_METHOD,
            send_body=route.send_body,
            stop_on_match=route.stop_on_match,
            shared_secret=route.shared_secret,
        )


def normalize_event(event: Any) -> Any:
    """Round-trip an event through JSON so selectors only see JSON data.

    Every number comes back as a float.
    """
    if isinstance(event, BaseModel):
        event = event.model_dump(by_alias=True)
    try:
        return json.loads(json.dumps(event, allow_nan=False), parse_int=float)
    except (TypeError, ValueError) as e:
        raise ResolveError(f"Event is not JSON-representable: {e}") from e


class Resolver:
    """Picks webhook targets for events by evaluating route selectors in order."""

    def __init__(self, config: RoutesConfig):
        self._config = config
        self._compiled: list[tuple[Route, CompiledSelector]] = []

        for route in config.routes:
            try:
                selector = compile_selector(route.selector)
            except SelectorCompileError as e:
                raise SelectorCompileError(
                    f"Invalid selector for route '{route.name}': {e}"
                ) from e
            self._compiled.append((route, selector))

        logger.info(f"Resolver initialized with {len(self._compiled)} route(s)")

    @property
    def routes(self) -> list[Route]:
        return self._config.routes

    def resolve(self, event: Any) -> list[Target]:
        """Return the ordered targets whose selectors match the event."""
        data = normalize_event(event)

        targets: list[Target] = []
        for route, selector in self._compiled:
            try:
                matched = selector.evaluate(data)
            except SelectorEvalError as e:
                logger.warning(
                    f"Selector eval error for route '{route.name}' ({selector.expression}): {e}"
                )
                continue
            except Exception as e:
                logger.exception(f"Unexpected selector failure for route '{route.name}': {e}")
                continue

            if not matched:
                logger.debug(f"Selector did not match for route '{route.name}'")
                continue

            logger.info(f"Selector matched for route '{route.name}' -> {route.destination_url}")
            targets.append(Target.from_route(route))

            if route.stop_on_match:
                logger.debug(f"Route '{route.name}' has stop_on_match, skipping remaining routes")
                break

        return targets
