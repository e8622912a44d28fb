"""Base class for webhook dispatchers."""

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict

from as_webhook.router import Target

logger = logging.getLogger(__name__)


class DeliveryOutcome(BaseModel):
    """Result of a single delivery attempt.

    A transport failure carries only ``error``; a received response carries
    ``status_code`` and the (capped) ``body``.
    """

    model_config = ConfigDict(frozen=True)

    status_code: int | None = None
    body: bytes = b""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.status_code is not None and self.status_code < 400


class BaseDispatcher(ABC):
    """Abstract base class for delivering payloads to targets."""

    @abstractmethod
    async def deliver(self, target: Target, payload: dict[str, Any]) -> DeliveryOutcome:
        """Deliver payload to the target."""
        ...

    async def send(self, target: Target, payload: dict[str, Any]) -> DeliveryOutcome:
        """Deliver with error handling; failures are returned, never raised."""
        try:
            return await self.deliver(target, payload)
        except Exception as e:
            logger.exception(f"Failed to deliver to {target.name} ({target.url}): {e}")
            return DeliveryOutcome(error=str(e) or type(e).__name__)
