"""Base class for inbound event source parsers."""

from abc import ABC, abstractmethod
from typing import Any

from as_webhook.models.event import Transaction


class BaseSource(ABC):
    """Abstract base class for inbound payload parsers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Source name identifier."""
        ...

    @abstractmethod
    def parse(self, payload: Any) -> Transaction:
        """Parse an inbound payload into a Transaction.

        Raises ValueError when the payload does not match the envelope.
        """
        ...
