"""
Broadcast gateway between the monitor and connected viewers.
Fans monitor events out to viewer queues and runs viewer commands.
"""
import asyncio
import json
import logging
from typing import Any, List, Optional, Union

from pydantic import ValidationError

from .events import (
    FLOW_OUTPUT, MONITOR_CONNECTED, MONITORING_ERROR, MONITORING_STARTED,
    MONITORING_STOPPED, OUTPUTS_CLEARED, PARSE_ERROR
)
from .models import ViewerCommand, ViewerMessage
from .monitor import MonitorController

logger = logging.getLogger(__name__)


class ViewerQueue(asyncio.Queue):
    """Outbound queue of one viewer; `dropped` is set once the gateway gives up on it"""

    def __init__(self, maxsize: int = 0):
        super().__init__(maxsize=maxsize)
        self.dropped = asyncio.Event()


class BroadcastGateway:
    """
    Pushes monitor notifications to every registered viewer.

    Each viewer is a bounded ViewerQueue of JSON strings. A viewer whose
    queue is full is dropped and its `dropped` event set so the transport
    can close the connection; the broker consumer is never slowed down.
    """

    def __init__(self, monitor: MonitorController, queue_size: int = 256, recent_limit: int = 20):
        """
        Initialize the gateway.

        Args:
            monitor: Monitor whose events are broadcast and which runs commands
            queue_size: Pending messages allowed per viewer before it is dropped
            recent_limit: Default number of outputs returned for "recent"
        """
        self.monitor = monitor
        self.queue_size = queue_size
        self.recent_limit = recent_limit
        self._viewers: List[ViewerQueue] = []
        self._unsubscribe = monitor.events.subscribe_all(self._on_event)

    @property
    def viewer_count(self) -> int:
        return len(self._viewers)

    def register(self) -> ViewerQueue:
        queue = ViewerQueue(maxsize=self.queue_size)
        self._viewers.append(queue)
        queue.put_nowait(_encode(ViewerMessage(type="connected")))
        logger.info(f"Viewer connected ({self.viewer_count} total)")
        return queue

    def unregister(self, queue: ViewerQueue):
        try:
            self._viewers.remove(queue)
            logger.info(f"Viewer disconnected ({self.viewer_count} total)")
        except ValueError:
            pass

    def close(self):
        self._unsubscribe()
        self._viewers.clear()

    def broadcast(self, message: ViewerMessage):
        payload = _encode(message)
        dead: List[ViewerQueue] = []
        for queue in self._viewers:
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                dead.append(queue)
        for queue in dead:
            logger.warning("Dropping slow viewer")
            self.unregister(queue)
            queue.dropped.set()

    def _on_event(self, kind: str, payload: Any):
        message = _to_viewer_message(kind, payload)
        if message is not None:
            self.broadcast(message)

    async def handle_command(self, raw: Union[str, bytes, dict]) -> Optional[ViewerMessage]:
        """
        Run one viewer command.

        Args:
            raw: JSON envelope {"type": ..., "data": ...} as text, bytes or dict

        Returns:
            Direct reply for the sending viewer, or None when the command
            only produces broadcasts (or was ignored)
        """
        try:
            data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
            command = ViewerCommand.model_validate(data)
        except (ValueError, ValidationError) as e:
            logger.warning(f"Ignoring invalid viewer message: {e}")
            return None

        args = command.data or {}
        try:
            if command.type == "start":
                await self.monitor.start(args.get("source_id"))
                return None

            if command.type == "stop":
                await self.monitor.stop()
                return None

            if command.type == "clear":
                self.monitor.clear()
                return None

            if command.type == "status":
                return ViewerMessage(type="status", data=self.monitor.get_status().model_dump(mode="json"))

            if command.type == "recent":
                limit = int(args.get("limit", self.recent_limit))
                outputs = self.monitor.get_latest_outputs(limit)
                return ViewerMessage(type="recent", data=[o.model_dump(mode="json") for o in outputs])

            if command.type == "stats":
                stats = self.monitor.get_topic_statistics()
                return ViewerMessage(type="stats", data=[s.model_dump(mode="json") for s in stats])

        except Exception as e:
            logger.error(f"Error handling '{command.type}' command: {e}", exc_info=True)
            return ViewerMessage(type="error", data={"message": "Failed to process request"})

        logger.warning(f"Unknown viewer message type: {command.type}")
        return None


def _to_viewer_message(kind: str, payload: Any) -> Optional[ViewerMessage]:
    if kind == FLOW_OUTPUT:
        return ViewerMessage(type="message", data=payload.model_dump(mode="json"))
    if kind == MONITORING_STARTED:
        return ViewerMessage(type="status", data={"monitoring": True, "topics": payload["topics"]})
    if kind == MONITORING_STOPPED:
        return ViewerMessage(type="status", data={"monitoring": False})
    if kind == MONITORING_ERROR:
        return ViewerMessage(type="error", data={"message": str(payload)})
    if kind == OUTPUTS_CLEARED:
        return ViewerMessage(type="cleared")
    if kind == PARSE_ERROR:
        return ViewerMessage(type="parse_error", data=payload)
    if kind == MONITOR_CONNECTED:
        return ViewerMessage(type="monitor_connected")
    return None


def _encode(message: ViewerMessage) -> str:
    return message.model_dump_json()
