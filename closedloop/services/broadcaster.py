"""Suggestion observer broadcast.

Synchronous fan-out of new suggestions to registered listeners, run on
the event loop thread. A failing listener is logged and does not stop
the others.
"""

from closedloop.core.interfaces import SuggestionObserver
from closedloop.core.models import Suggestion
from closedloop.logging_config import get_logger

logger = get_logger(__name__)


class SuggestionBroadcaster:
    def __init__(self) -> None:
        self._observers: list[SuggestionObserver] = []

    def register(self, observer: SuggestionObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unregister(self, observer: SuggestionObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def notify(self, suggestion: Suggestion) -> None:
        for observer in list(self._observers):
            try:
                observer.suggestion_did_update(suggestion)
            except Exception as e:
                logger.error(
                    "Suggestion observer failed",
                    observer=type(observer).__name__,
                    error=str(e),
                )
