"""Optional progress sink. Core behaviour never depends on a listener."""

import logging
from collections.abc import Callable

from wallbounce.models import DispatchEvent

logger = logging.getLogger(__name__)

EventSink = Callable[[DispatchEvent], None]


def publish(sink: EventSink | None, event: DispatchEvent) -> None:
    if sink is None:
        return
    try:
        sink(event)
    except Exception:
        logger.warning("Event sink failed on %s", event.name, exc_info=True)
