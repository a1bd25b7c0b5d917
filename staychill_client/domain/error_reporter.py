"""
UI-facing network error surface.

Holds the error currently shown to the user together with the callback that
re-runs the failed request.
"""

import inspect
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, List, Optional, Union

from shared.logging import get_logger
from .error_classification import ClassifiedError, ErrorKind


RetryCallback = Callable[[], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class NetworkErrorState:
    visible: bool = False
    kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    on_retry: Optional[RetryCallback] = None

    @property
    def affordance(self) -> Optional[str]:
        return self.kind.affordance if self.kind is not None else None


class NetworkErrorReporter:
    """Single error slot; the latest error replaces the previous one."""

    def __init__(self):
        self.state = NetworkErrorState()
        self._listeners: List[Callable[[NetworkErrorState], None]] = []
        self.logger = get_logger("client.error_reporter")

    def show_error(self, error: ClassifiedError, on_retry: Optional[RetryCallback] = None) -> None:
        self.state = NetworkErrorState(
            visible=True,
            kind=error.kind,
            message=error.message,
            on_retry=on_retry,
        )
        self.logger.info("Showing network error", kind=error.kind.value, affordance=error.affordance)
        self._notify()

    def hide_error(self) -> None:
        self.state = replace(self.state, visible=False)
        self._notify()

    async def retry(self) -> Any:
        """Hide the error and run its retry callback, if any."""
        callback = self.state.on_retry
        self.hide_error()
        if callback is None:
            return None
        result = callback()
        if inspect.isawaitable(result):
            result = await result
        return result

    def subscribe(self, listener: Callable[[NetworkErrorState], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception as e:
                self.logger.error("Error reporter listener failed", error=str(e))
