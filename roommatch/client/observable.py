from typing import Any, Callable, List
import logging

logger = logging.getLogger(__name__)

Callback = Callable[..., Any]


class Observable:
    """subscribe(callback) -> unsubscribe. Los callbacks se llaman en orden de alta."""

    def __init__(self) -> None:
        self._subscribers: List[Callback] = []

    def subscribe(self, callback: Callback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def _emit(self, *args: Any) -> None:
        for callback in list(self._subscribers):
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"Error en un suscriptor: {e}", exc_info=True)
