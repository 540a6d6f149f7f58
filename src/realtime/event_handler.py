"""
Event handling system for realtime communication.
Implements a basic pub/sub mechanism with async support.
"""

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from utils.ml_logging import get_logger

logger = get_logger("realtime.event_handler")

EventCallback = Union[Callable[[Any], Any], Callable[[Any], Awaitable[Any]]]


class RealtimeEventHandler:
    """
    Base class to manage event listeners and dispatch events
    in a realtime asynchronous environment.
    """

    def __init__(self) -> None:
        self.event_handlers: Dict[str, List[EventCallback]] = defaultdict(list)

    def on(self, event_name: str, handler: EventCallback) -> EventCallback:
        """
        Register a handler function for a specific event.

        Args:
            event_name (str): Name of the event to listen for.
            handler (Callable): Function or coroutine to be called when the event fires.

        Returns:
            Callable: The registered handler, for later `off()`.
        """
        if not callable(handler):
            logger.error(f"Tried to register non-callable handler for event '{event_name}'.")
            raise TypeError("Handler must be callable.")
        self.event_handlers[event_name].append(handler)
        logger.debug(f"Handler registered for event '{event_name}'.")
        return handler

    def off(self, event_name: str, handler: Optional[EventCallback] = None) -> None:
        """
        Remove one handler, or every handler when none is given, for an event.
        """
        handlers = self.event_handlers.get(event_name)
        if not handlers:
            return
        if handler is None:
            del self.event_handlers[event_name]
            return
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            del self.event_handlers[event_name]

    def dispatch(self, event_name: str, event: Any) -> None:
        """
        Trigger all handlers associated with a specific event.

        Synchronous handlers run inline; coroutine handlers are scheduled on
        the running loop. A failing handler is logged and does not stop the
        remaining handlers.

        Args:
            event_name (str): Name of the event to dispatch.
            event (Any): Data associated with the event.
        """
        if event_name not in self.event_handlers:
            return

        # Copy: handlers may unregister themselves while running
        for handler in list(self.event_handlers[event_name]):
            try:
                if inspect.iscoroutinefunction(handler):
                    task = asyncio.get_running_loop().create_task(handler(event))
                    task.add_done_callback(self._report_task_error(event_name))
                else:
                    handler(event)
            except Exception as e:
                logger.error(f"Error dispatching event '{event_name}' to handler: {e}", exc_info=True)

    @staticmethod
    def _report_task_error(event_name: str) -> Callable[[asyncio.Task], None]:
        def _done(task: asyncio.Task) -> None:
            if not task.cancelled() and task.exception() is not None:
                logger.error(
                    f"Async handler for event '{event_name}' failed: {task.exception()}",
                    exc_info=task.exception(),
                )

        return _done

    def clear_event_handlers(self) -> None:
        """
        Remove all registered event handlers.
        """
        self.event_handlers.clear()
        logger.debug("All event handlers cleared.")

    async def wait_for_next(self, event_name: str, timeout: Optional[float] = None) -> Any:
        """
        Wait for the next occurrence of a specific event asynchronously.

        Args:
            event_name (str): Event to wait for.
            timeout (Optional[float]): Seconds to wait before raising
                `asyncio.TimeoutError`; waits forever when None.

        Returns:
            Any: Data of the received event.
        """
        future = asyncio.get_running_loop().create_future()

        def _handler(event: Any):
            if not future.done():
                future.set_result(event)

        self.on(event_name, _handler)
        logger.debug(f"Waiting for next event '{event_name}'.")
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            self.off(event_name, _handler)
