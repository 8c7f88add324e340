"""
Publish/subscribe registry for monitor notifications.
"""
import logging
from typing import Any, Callable, Dict, List, Tuple

logger = logging.getLogger(__name__)

MONITORING_STARTED = "monitoring-started"
MONITORING_STOPPED = "monitoring-stopped"
MONITOR_CONNECTED = "monitor-connected"
MONITORING_ERROR = "monitoring-error"
FLOW_OUTPUT = "flow-output"
PARSE_ERROR = "parse-error"
OUTPUTS_CLEARED = "outputs-cleared"

EVENT_KINDS = (
    MONITORING_STARTED,
    MONITORING_STOPPED,
    MONITOR_CONNECTED,
    MONITORING_ERROR,
    FLOW_OUTPUT,
    PARSE_ERROR,
    OUTPUTS_CLEARED,
)

Handler = Callable[[Any], None]
AnyHandler = Callable[[str, Any], None]


class EventBus:
    """
    Delivers events to handlers registered per event kind.

    Handlers are plain callables invoked synchronously in registration
    order. Tags passed to subscribe() are matched against attributes of the
    payload, e.g. subscribe(FLOW_OUTPUT, h, source_id="acme") only sees
    outputs from that source.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Tuple[Handler, Dict[str, Any]]]] = {}
        self._any_handlers: List[AnyHandler] = []

    def subscribe(self, kind: str, handler: Handler, **tags) -> Callable[[], None]:
        """
        Register a handler for one event kind.

        Returns:
            Callable that removes the registration
        """
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind: {kind}")
        entry = (handler, tags)
        self._handlers.setdefault(kind, []).append(entry)

        def unsubscribe():
            try:
                self._handlers[kind].remove(entry)
            except ValueError:
                pass

        return unsubscribe

    def subscribe_all(self, handler: AnyHandler) -> Callable[[], None]:
        """Register a handler receiving (kind, payload) for every event"""
        self._any_handlers.append(handler)

        def unsubscribe():
            try:
                self._any_handlers.remove(handler)
            except ValueError:
                pass

        return unsubscribe

    def emit(self, kind: str, payload: Any = None):
        for handler, tags in list(self._handlers.get(kind, ())):
            if tags and not _matches(payload, tags):
                continue
            try:
                handler(payload)
            except Exception as e:
                logger.error(f"Handler for '{kind}' failed: {e}", exc_info=True)

        for handler in list(self._any_handlers):
            try:
                handler(kind, payload)
            except Exception as e:
                logger.error(f"Handler for '{kind}' failed: {e}", exc_info=True)


def _matches(payload: Any, tags: Dict[str, Any]) -> bool:
    return all(getattr(payload, name, None) == value for name, value in tags.items())
