"""Type-keyed event dispatch.

Services publish plain event objects (attendance transitions, enrollments)
to an injected dispatcher; subscribers register per event type.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Type

logger = logging.getLogger(__name__)

Handler = Callable[[object], None]


@dataclass(frozen=True)
class IdentityEnrolled:
    identity_id: str
    name: str
    email: str
    group_name: str
    enrolled_at: datetime


class EventDispatcher:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: Dict[Type, List[Handler]] = {}

    def subscribe(self, event_type: Type, handler: Handler) -> None:
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: Type, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: object) -> int:
        """Deliver ``event`` to every handler of its type (and base types).

        A failing handler is logged and does not stop delivery to the rest.
        Returns the number of handlers that ran successfully.
        """
        with self._lock:
            handlers = [
                h
                for event_type, hs in self._handlers.items()
                if isinstance(event, event_type)
                for h in hs
            ]

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception:
                logger.exception("Event handler %r failed for %s", handler, type(event).__name__)
        return delivered


def log_event(event: object) -> None:
    logger.info("EVENT: %s | %s", type(event).__name__, event)
