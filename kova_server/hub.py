"""
Status hub fanning deployment status out to live connections.

The hub is an actor: one dispatch task exclusively owns the subscriber
registry, and every operation (register, unregister, broadcast, query) is a
message in a single FIFO inbox. Broadcasts for a project therefore reach
each subscriber in the order they were sent.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """A live text-message connection (e.g. a Starlette WebSocket)."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


@dataclass(eq=False)
class Subscriber:
    """A live connection subscribed to the status of one project."""

    connection: Connection
    project_id: str


@dataclass
class _Register:
    subscriber: Subscriber
    initial: dict[str, Any] | None = None


@dataclass
class _Unregister:
    subscriber: Subscriber


@dataclass
class _Broadcast:
    project_id: str
    payload: Any


@dataclass
class _Query:
    project_id: str
    reply: asyncio.Future = field(repr=False)


@dataclass
class _Stop:
    pass


class StatusHub:
    """
    Per-project publish/subscribe registry.

    Args:
        send_timeout: Seconds a single write may take before the subscriber is dropped
        inbox_size: Capacity of the message inbox
    """

    def __init__(self, send_timeout: float = 5.0, inbox_size: int = 256):
        self.send_timeout = send_timeout
        self._inbox: asyncio.Queue = asyncio.Queue(maxsize=inbox_size)
        # Owned by the dispatch task only
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._task: asyncio.Task | None = None
        self._closed = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the dispatch task."""
        if self.is_running:
            logger.warning("Status hub already running")
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Status hub started")

    async def stop(self) -> None:
        """Stop dispatching and close every remaining subscriber connection."""
        if self._closed:
            return
        self._closed = True

        if self._task:
            await self._inbox.put(_Stop())
            await self._task
            self._task = None

        logger.info("Status hub stopped")

    async def register(
        self, subscriber: Subscriber, initial: dict[str, Any] | None = None
    ) -> None:
        """
        Subscribe a connection to its project's status events.

        Args:
            subscriber: Subscriber to add
            initial: Optional payload delivered to this subscriber right after registration
        """
        await self._send(_Register(subscriber, initial))

    async def unregister(self, subscriber: Subscriber) -> None:
        """Remove a subscriber. Removing an absent subscriber is a no-op."""
        await self._send(_Unregister(subscriber))

    async def broadcast(self, project_id: str, payload: Any) -> None:
        """Deliver a JSON payload to every subscriber of a project."""
        await self._send(_Broadcast(project_id, payload))

    async def subscribers(self, project_id: str) -> list[Subscriber]:
        """
        Get the current subscribers of a project.

        The answer comes from the dispatch task, after every message sent
        before this call has been handled.

        Raises:
            RuntimeError: If the hub is not running
        """
        if not self.is_running:
            raise RuntimeError("Status hub is not running")
        reply: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._inbox.put(_Query(project_id, reply))
        return await reply

    async def _send(self, message: Any) -> None:
        if self._closed:
            logger.debug(f"Status hub stopped, dropping {type(message).__name__}")
            return
        await self._inbox.put(message)

    async def _run_loop(self) -> None:
        while True:
            message = await self._inbox.get()
            try:
                if isinstance(message, _Stop):
                    await self._close_all()
                    self._drain_inbox()
                    return
                if isinstance(message, _Register):
                    await self._handle_register(message)
                elif isinstance(message, _Unregister):
                    self._remove(message.subscriber)
                elif isinstance(message, _Broadcast):
                    await self._handle_broadcast(message)
                elif isinstance(message, _Query):
                    if not message.reply.done():
                        message.reply.set_result(
                            list(self._subscribers.get(message.project_id, []))
                        )
            except Exception as e:
                logger.error(f"Error in status hub dispatch: {e}", exc_info=True)

    async def _handle_register(self, message: _Register) -> None:
        subscriber = message.subscriber
        clients = self._subscribers.setdefault(subscriber.project_id, [])
        if subscriber not in clients:
            clients.append(subscriber)
        logger.info(f"Client connected for project: {subscriber.project_id}")

        if message.initial is not None:
            data = json.dumps(message.initial)
            if not await self._write(subscriber, data):
                await self._drop(subscriber)

    async def _handle_broadcast(self, message: _Broadcast) -> None:
        clients = list(self._subscribers.get(message.project_id, []))
        if not clients:
            return

        try:
            data = json.dumps(message.payload)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to marshal message: {e}")
            return

        for subscriber in clients:
            if not await self._write(subscriber, data):
                await self._drop(subscriber)

    async def _write(self, subscriber: Subscriber, data: str) -> bool:
        try:
            await asyncio.wait_for(
                subscriber.connection.send_text(data), timeout=self.send_timeout
            )
            return True
        except Exception as e:
            logger.warning(
                f"Failed to send message to client of project "
                f"{subscriber.project_id}: {e!r}"
            )
            return False

    def _remove(self, subscriber: Subscriber) -> None:
        clients = self._subscribers.get(subscriber.project_id)
        if not clients or subscriber not in clients:
            return
        clients.remove(subscriber)
        if not clients:
            del self._subscribers[subscriber.project_id]
        logger.info(f"Client disconnected from project: {subscriber.project_id}")

    async def _drop(self, subscriber: Subscriber) -> None:
        """Remove a subscriber whose write failed and close its connection."""
        self._remove(subscriber)
        await self._close(subscriber)

    async def _close(self, subscriber: Subscriber) -> None:
        try:
            await asyncio.wait_for(
                subscriber.connection.close(), timeout=self.send_timeout
            )
        except Exception as e:
            logger.debug(f"Error closing subscriber connection: {e!r}")

    async def _close_all(self) -> None:
        for clients in self._subscribers.values():
            for subscriber in clients:
                await self._close(subscriber)
        self._subscribers.clear()

    def _drain_inbox(self) -> None:
        # Queries racing with stop still get an answer
        while not self._inbox.empty():
            message = self._inbox.get_nowait()
            if isinstance(message, _Query) and not message.reply.done():
                message.reply.set_result([])
