"""Transaction processing: filter, resolve and dispatch each event."""

import logging
from typing import Any

from as_webhook.channels.base import BaseDispatcher, DeliveryOutcome
from as_webhook.models.event import MESSAGE_EVENT_TYPE, MatrixEvent, Transaction
from as_webhook.router import ResolveError, Resolver, Target

logger = logging.getLogger(__name__)


def build_payload(event: MatrixEvent, target: Target) -> dict[str, Any]:
    """Build the JSON body delivered to a target for an event."""
    payload: dict[str, Any] = {
        "event_id": event.event_id,
        "room_id": event.room_id,
        "sender": event.sender,
        "timestamp": event.timestamp,
        "content": event.content,
        "event_type": event.type,
    }
    body = event.body
    if target.send_body and body is not None:
        payload["message"] = body
    return payload


class EventProcessor:
    """Routes the events of a transaction to their webhook targets.

    Events are handled in order and each event's targets are dispatched one
    after another. Delivery failures are logged and never propagate.
    """

    def __init__(
        self,
        resolver: Resolver,
        dispatcher: BaseDispatcher,
        event_type: str = MESSAGE_EVENT_TYPE,
    ):
        self._resolver = resolver
        self._dispatcher = dispatcher
        self._event_type = event_type

    @property
    def resolver(self) -> Resolver:
        return self._resolver

    async def process_transaction(
        self, txn_id: str, transaction: Transaction
    ) -> list[tuple[Target, DeliveryOutcome]]:
        logger.info(f"Processing transaction {txn_id} with {len(transaction.events)} event(s)")

        results: list[tuple[Target, DeliveryOutcome]] = []
        for event in transaction.events:
            results.extend(await self.process_event(event))
        return results

    async def process_event(self, event: MatrixEvent) -> list[tuple[Target, DeliveryOutcome]]:
        logger.info(
            f"Processing event: type={event.type}, room={event.room_id}, sender={event.sender}"
        )

        if event.type != self._event_type:
            logger.info(f"Skipping non-message event type: {event.type}")
            return []

        if event.body is None:
            logger.info(f"Event {event.event_id} has no body content")

        try:
            targets = self._resolver.resolve(event.to_selector_input())
        except ResolveError as e:
            logger.error(f"Resolve error for event {event.event_id}: {e}")
            return []

        if not targets:
            logger.info(f"No routes matched for event {event.event_id} in room {event.room_id}")
            return []

        results: list[tuple[Target, DeliveryOutcome]] = []
        for target in targets:
            logger.info(
                f"Forwarding event {event.event_id} to route '{target.name}' "
                f"-> {target.url} ({target.method})"
            )
            outcome = await self._dispatcher.send(target, build_payload(event, target))
            if outcome.ok:
                logger.info(f"Event {event.event_id} delivered to '{target.name}'")
            else:
                logger.error(
                    f"Failed to deliver event {event.event_id} to '{target.name}': "
                    f"status={outcome.status_code}, error={outcome.error}"
                )
            results.append((target, outcome))
        return results
