import logging
from abc import ABC, abstractmethod

from django.conf import settings

logger = logging.getLogger(__name__)


class BaseNotificationSink(ABC):
    """
    Destination for lifecycle notifications (payment released, dispute
    opened, auto-approval warning, ...). Delivery is best effort: callers
    never let a sink failure undo a transition.
    """

    @abstractmethod
    def emit(self, event_type: str, payload: dict):
        pass


class LoggingNotificationSink(BaseNotificationSink):
    def __init__(self, logger_name='audit'):
        self.logger = logging.getLogger(logger_name)

    def emit(self, event_type, payload):
        self.logger.info(f"{event_type}: {payload}")


class InMemoryNotificationSink(BaseNotificationSink):
    """Keeps emitted notifications in a list; used by tests and local runs."""

    def __init__(self):
        self.emitted = []

    def emit(self, event_type, payload):
        self.emitted.append((event_type, payload))

    def of_type(self, event_type):
        return [payload for kind, payload in self.emitted if kind == event_type]

    def clear(self):
        self.emitted.clear()


def get_notification_sink(sink_name: str = None, **kwargs) -> BaseNotificationSink:
    """
    Factory function to get notification sink instances.

    Args:
        sink_name: Name of the sink, defaults to settings.NOTIFICATION_SINK
        **kwargs: Passed to the sink constructor

    Returns:
        BaseNotificationSink: Sink instance
    """
    sinks = {
        'logging': LoggingNotificationSink,
        'memory': InMemoryNotificationSink,
    }

    sink_name = sink_name or settings.NOTIFICATION_SINK
    if sink_name not in sinks:
        raise ValueError(f"Unknown notification sink: {sink_name}")

    return sinks[sink_name](**kwargs)
