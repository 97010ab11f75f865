"""Observer hooks used to notify UI collaborators"""

import asyncio
import inspect
import logging
from functools import partial
from typing import Any, Callable, Dict, List, Set

logger = logging.getLogger(__name__)


class EventHooks:
    """Named callback lists

    Callbacks may be plain functions or coroutine functions. A failing
    callback is logged and does not stop the others from running.
    """

    def __init__(self):
        self._callbacks: Dict[str, List[Callable[..., Any]]] = {}
        # Scheduled coroutine callbacks, held until they finish
        self._tasks: Set[asyncio.Task] = set()

    def on(self, event: str, callback: Callable[..., Any]) -> Callable[[], None]:
        """Register a callback for ``event``

        Returns:
            A function that unregisters the callback
        """
        self._callbacks.setdefault(event, []).append(callback)

        def unsubscribe():
            callbacks = self._callbacks.get(event, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def emit(self, event: str, *args: Any):
        """Invoke every callback registered for ``event``

        Coroutine callbacks are scheduled on the running loop; without a
        running loop they are run to completion.
        """
        for callback in list(self._callbacks.get(event, [])):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    try:
                        loop = asyncio.get_running_loop()
                    except RuntimeError:
                        asyncio.run(result)
                    else:
                        task = loop.create_task(result)
                        self._tasks.add(task)
                        task.add_done_callback(partial(self._task_done, event))
            except Exception:
                logger.exception(f"Callback for '{event}' failed")

    def _task_done(self, event: str, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Callback for '{event}' failed: {error}", exc_info=error)
