"""
Broadcast gateway for real-time chat events.

The moderation engine decides what to publish; a gateway delivers it.
BroadcastGateway is the interface, LocalBroadcastGateway an in-process
fan-out to async subscribers (one room channel plus one channel per user).
Delivery is fire-and-forget: a failing subscriber is logged and skipped.
"""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, dict], Awaitable[None]]


class BroadcastGateway(ABC):
    """Publish/subscribe channel that the engine notifies after persistence."""

    @abstractmethod
    async def publish_to_room(self, event: str, payload: dict) -> None:
        """Send an event to every client connected to the room."""

    @abstractmethod
    async def publish_to_user(self, user_id: int, event: str, payload: dict) -> None:
        """Send an event to a single user's notification channel."""


class LocalBroadcastGateway(BroadcastGateway):
    """
    In-process gateway that forwards events to registered coroutines.

    Usage:
        gateway = LocalBroadcastGateway()
        gateway.subscribe_room(on_room_event)
        gateway.subscribe_user(42, on_user_event)
    """

    def __init__(self) -> None:
        self._room_subscribers: list[Subscriber] = []
        self._user_subscribers: dict[int, list[Subscriber]] = defaultdict(list)

    def subscribe_room(self, subscriber: Subscriber) -> None:
        self._room_subscribers.append(subscriber)

    def unsubscribe_room(self, subscriber: Subscriber) -> None:
        if subscriber in self._room_subscribers:
            self._room_subscribers.remove(subscriber)

    def subscribe_user(self, user_id: int, subscriber: Subscriber) -> None:
        self._user_subscribers[user_id].append(subscriber)

    def unsubscribe_user(self, user_id: int, subscriber: Subscriber) -> None:
        subscribers = self._user_subscribers.get(user_id)
        if subscribers and subscriber in subscribers:
            subscribers.remove(subscriber)
            if not subscribers:
                del self._user_subscribers[user_id]

    async def publish_to_room(self, event: str, payload: dict) -> None:
        await self._deliver(list(self._room_subscribers), event, payload, channel="room")

    async def publish_to_user(self, user_id: int, event: str, payload: dict) -> None:
        subscribers = list(self._user_subscribers.get(user_id, []))
        await self._deliver(subscribers, event, payload, channel=f"user:{user_id}")

    async def _deliver(
        self, subscribers: list[Subscriber], event: str, payload: dict, channel: str
    ) -> None:
        for subscriber in subscribers:
            try:
                await subscriber(event, payload)
            except Exception:
                logger.error(
                    f"Subscriber failed for event={event} on channel={channel}",
                    exc_info=True,
                )
        logger.debug(f"Published {event} to {channel} ({len(subscribers)} subscriber(s))")
