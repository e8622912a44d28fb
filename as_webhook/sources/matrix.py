"""Matrix application service transaction parser."""

from typing import Any

from as_webhook.models.event import Transaction
from as_webhook.sources.base import BaseSource


class MatrixSource(BaseSource):
    """Parser for homeserver -> application service transactions."""

    @property
    def name(self) -> str:
        return "matrix"

    def parse(self, payload: Any) -> Transaction:
        if not isinstance(payload, dict):
            raise ValueError(f"Transaction must be a JSON object, got {type(payload).__name__}")
        return Transaction.model_validate(payload)
