"""Generic HTTP webhook dispatcher with optional HMAC signing."""

import hashlib
import hmac
import json
import logging
from typing import Any

import httpx

from as_webhook.channels.base import BaseDispatcher, DeliveryOutcome
from as_webhook.models.routes import DEFAULT_METHOD
from as_webhook.router import Target

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
MAX_RESPONSE_BYTES = 1024 * 1024
SIGNATURE_HEADER = "X-Webhook-Signature"


def generate_signature(body: bytes, shared_secret: str) -> str:
    """HMAC-SHA256 of the body, hex-encoded and prefixed with ``sha256=``."""
    digest = hmac.new(shared_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def encode_payload(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


async def _read_capped(response: httpx.Response, limit: int = MAX_RESPONSE_BYTES) -> bytes:
    buf = bytearray()
    async for chunk in response.aiter_bytes():
        buf.extend(chunk[: limit - len(buf)])
        if len(buf) >= limit:
            break
    return bytes(buf)


class WebhookDispatcher(BaseDispatcher):
    """Sends JSON payloads to webhook targets, one request per call, no retries."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._timeout = timeout or DEFAULT_TIMEOUT
        self._transport = transport

    @property
    def timeout(self) -> float:
        return self._timeout

    async def deliver(self, target: Target, payload: dict[str, Any]) -> DeliveryOutcome:
        method = (target.method or DEFAULT_METHOD).upper()
        body = encode_payload(payload)

        headers = {"Content-Type": "application/json"}
        if target.shared_secret:
            headers[SIGNATURE_HEADER] = generate_signature(body, target.shared_secret)
            logger.debug(f"Added signature header for {target.name}")

        logger.info(f"Sending webhook to {target.url} with method {method}")

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                async with client.stream(method, target.url, content=body, headers=headers) as response:
                    status_code = response.status_code
                    response_body = await _read_capped(response)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Error sending webhook to {target.url}: {e!r}")
            return DeliveryOutcome(error=str(e) or type(e).__name__)

        logger.info(f"Webhook sent to {target.url}, status: {status_code}")
        if status_code >= 400:
            logger.error(
                f"Error response from {target.url}: "
                f"{response_body.decode('utf-8', errors='replace')}"
            )

        return DeliveryOutcome(status_code=status_code, body=response_body)
