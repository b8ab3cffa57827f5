"""
Write notifications for socket channels.

The action engine calls ``notify_on_write(connector_name, initiator_id)``
after every successful connector write. The default ChannelNotifier maps the
manifest ``sockets`` section to subscriber callbacks:

    sockets:
      receipt-updates:
        watch: receipt
        emit: {event: receipt-changed, payload: receipt}

Every subscriber of a channel watching the written connector receives
``{"event": ..., "payload": ...}``, except the subscriber that initiated the
write. Connection management belongs to the transport layer, which only
needs to call ``subscribe`` / ``unsubscribe``.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union

from .connector_manager import ConnectorManager
from .expressions import Evaluator
from .manifest import ChannelConfig


logger = logging.getLogger(__name__)

Subscriber = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class WriteNotifier(Protocol):
    async def notify_on_write(self, connector_name: str, initiator_id: Optional[str] = None) -> None:
        ...


class ChannelNotifier:
    """
    Fan out connector writes to channel subscribers.

    Args:
        channels: The manifest ``sockets`` section.
        connectors: Connector manager used to read the written value.
        evaluator: Evaluates ``emit.payload`` against ``{<connector>: value, data: {...}}``.
    """

    def __init__(
        self,
        channels: Dict[str, ChannelConfig],
        connectors: ConnectorManager,
        evaluator: Optional[Evaluator] = None,
    ):
        self.channels = dict(channels)
        self.connectors = connectors
        self.evaluator = evaluator or Evaluator()
        self._subscribers: Dict[str, Dict[str, Subscriber]] = {
            name: {} for name in self.channels
        }

    def subscribe(self, channel: str, subscriber_id: str, callback: Subscriber) -> bool:
        """Register a subscriber; returns False for an unknown channel."""
        if channel not in self._subscribers:
            logger.warning(f"Subscription to unknown channel '{channel}' ignored")
            return False
        self._subscribers[channel][subscriber_id] = callback
        logger.info(f"Subscriber '{subscriber_id}' joined channel '{channel}'")
        return True

    def unsubscribe(self, subscriber_id: str, channel: Optional[str] = None) -> None:
        """Remove a subscriber from one channel, or from all of them."""
        names = [channel] if channel else list(self._subscribers)
        for name in names:
            self._subscribers.get(name, {}).pop(subscriber_id, None)

    async def notify_on_write(self, connector_name: str, initiator_id: Optional[str] = None) -> None:
        for channel_name, channel in self.channels.items():
            if channel.watch != connector_name:
                continue
            subscribers = self._subscribers.get(channel_name, {})
            if not subscribers:
                continue

            logger.info(f"Notifying channel '{channel_name}' due to write on '{connector_name}'")
            values = await self.connectors.get_context([connector_name])
            payload = None
            if channel.emit.payload:
                payload = self.evaluator.evaluate(
                    channel.emit.payload, {**values, "data": values}
                )
            if payload is None:
                payload = values[connector_name]
            message = {"event": channel.emit.event, "payload": payload}

            for subscriber_id, callback in list(subscribers.items()):
                if initiator_id is not None and subscriber_id == initiator_id:
                    continue
                try:
                    result = callback(message)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception(
                        f"Delivery to subscriber '{subscriber_id}' on '{channel_name}' failed"
                    )
