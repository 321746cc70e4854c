"""asyncio host adapters - Promise hooks and op accounting on an event loop.

``AsyncioPromiseHost`` treats every ``asyncio.Task`` as a promise: a task
factory reports ``"init"`` when a task is created and a done-callback
reports ``"resolve"`` when it finishes.  Bare futures from
``loop.create_future()`` are not reported.

``instrument_op`` wraps host calls so they are counted on an
``OpMetricsSummaryTracker``.
"""

import asyncio
import functools
import inspect
import logging
from typing import Any, Callable, Optional

from sanitest.ops import OpMetricsSummaryTracker
from sanitest.promise_tracker import (
    HOOK_INIT,
    HOOK_RESOLVE,
    HookAlreadyInstalledError,
    PromiseHook,
)

logger = logging.getLogger(__name__)


class AsyncioPromiseHost:
    """Delivers task lifecycle events of one event loop to a single hook.

    Usage::

        loop = asyncio.new_event_loop()
        host = AsyncioPromiseHost(loop)
        tracker.install(host)
        ...
        host.remove_promise_hook()
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._hook: Optional[PromiseHook] = None
        self._previous_factory = None

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    @property
    def installed(self) -> bool:
        return self._hook is not None

    def set_promise_hook(self, hook: PromiseHook) -> None:
        if self._hook is not None:
            raise HookAlreadyInstalledError(
                "A promise hook is already installed on this event loop"
            )
        self._hook = hook
        self._previous_factory = self._loop.get_task_factory()
        self._loop.set_task_factory(self._task_factory)
        logger.debug("Installed promise hook on %r", self._loop)

    def remove_promise_hook(self) -> None:
        if self._hook is None:
            return
        self._loop.set_task_factory(self._previous_factory)
        self._previous_factory = None
        self._hook = None

    def _task_factory(self, loop, coro, **kwargs):
        if self._previous_factory is not None:
            task = self._previous_factory(loop, coro, **kwargs)
        else:
            task = asyncio.Task(coro, loop=loop, **kwargs)
        hook = self._hook
        if hook is not None:
            hook(HOOK_INIT, id(task))
            task.add_done_callback(functools.partial(_report_resolved, hook))
        return task


def _report_resolved(hook: PromiseHook, task: asyncio.Future) -> None:
    hook(HOOK_RESOLVE, id(task))


# ── Op Accounting ──


def instrument_op(
    tracker: Optional[OpMetricsSummaryTracker],
    name: Optional[str] = None,
) -> Callable[[Callable], Callable]:
    """Count calls to the decorated function as host operations.

    Coroutine functions are counted as async dispatches the moment they are
    called and as completed once the coroutine finishes, so a coroutine that
    is never awaited stays outstanding.  Plain functions count as sync
    dispatches.  With no tracker the function is returned unchanged.
    """

    def decorator(func: Callable) -> Callable:
        if tracker is None:
            return func
        op_name = name or func.__name__

        if inspect.iscoroutinefunction(func):

            async def _run(coro) -> Any:
                failed = False
                try:
                    return await coro
                except BaseException:
                    failed = True
                    raise
                finally:
                    tracker.complete(op_name, failed=failed)

            @functools.wraps(func)
            def async_wrapper(*args, **kwargs):
                tracker.dispatch(op_name, is_async=True)
                return _run(func(*args, **kwargs))

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            tracker.dispatch(op_name, is_async=False)
            return func(*args, **kwargs)

        return sync_wrapper

    return decorator
