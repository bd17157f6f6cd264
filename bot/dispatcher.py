"""Update dispatcher.

Routes each decoded :class:`~sdk.models.Update` to the handler the
:class:`~bot.registry.HandlerRegistry` selects and invokes it.  The
dispatcher is the error boundary for handler code: whatever a handler
raises is logged here and never reaches the update source, so one broken
handler cannot stop the update stream.  Failed invocations are not retried.

Two invocation modes exist.  ``SEQUENTIAL`` awaits each handler before
:meth:`Dispatcher.dispatch` returns.  ``CONCURRENT`` schedules the handler
as an :func:`asyncio.create_task` and returns immediately; tasks that
belong to the same conversation are chained so they still run in arrival
order.
"""

import asyncio
import enum
import functools
import inspect
from typing import Any, Awaitable, Callable, Optional

from bot.exceptions import ConfigurationError
from bot.registry import Handler, HandlerRegistry, registry as default_registry
from core.logger import CourierLogger
from sdk.models import Update

logger = CourierLogger.get_logger()

CallNext = Callable[[], Awaitable[None]]
Middleware = Callable[[Update, CallNext], Awaitable[None]]


class DispatchMode(str, enum.Enum):
    SEQUENTIAL = "sequential"
    CONCURRENT = "concurrent"


async def _call_handler(handler: Handler, payload: Any) -> None:
    """Await coroutine handlers; run plain callables in a worker thread."""
    if inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(getattr(handler, "__call__", None)):
        await handler(payload)
        return
    result = await asyncio.to_thread(handler, payload)
    if inspect.isawaitable(result):
        await result


def _handler_name(handler: Handler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


class Dispatcher:
    """Finds and invokes the handler for each update.

    Safe to call concurrently from several coroutines (e.g. one per webhook
    request): it reads the frozen registry and keeps no per-update state
    outside the event loop thread.
    """

    def __init__(
        self,
        registry: Optional[HandlerRegistry] = None,
        mode: DispatchMode = DispatchMode.SEQUENTIAL,
    ) -> None:
        self._registry = registry if registry is not None else default_registry
        self._mode = DispatchMode(mode)
        self._middlewares: list[Middleware] = []
        self._tasks: set[asyncio.Task] = set()
        self._tails: dict[int, asyncio.Task] = {}

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def mode(self) -> DispatchMode:
        return self._mode

    @property
    def pending(self) -> int:
        """Number of handler tasks still running (``CONCURRENT`` mode)."""
        return len(self._tasks)

    def use(self, middleware: Middleware) -> Middleware:
        """Wrap every handler invocation in *middleware*; usable as a decorator.

        Middleware runs in registration order, outermost first, and receives
        the update plus ``call_next``.  Not calling ``call_next`` skips the
        handler.
        """
        if self._registry.frozen:
            raise ConfigurationError("cannot add middleware while an update source is running")
        self._middlewares.append(middleware)
        return middleware

    async def dispatch(self, update: Update) -> bool:
        """Route *update* and invoke its handler.

        Returns ``True`` if a handler (or the unhandled hook) was invoked or
        scheduled, ``False`` if the update was dropped.  Never raises for
        handler failures.
        """
        try:
            route = self._registry.match(update)
        except Exception:
            logger.exception("Route matching failed", extra={"update_id": update.update_id})
            return False

        if route is not None:
            handler, payload = route.entry.handler, route.payload
        elif self._registry.unhandled_handler is not None:
            handler, payload = self._registry.unhandled_handler, update
        else:
            kind = update.kind.value if update.kind else None
            logger.debug("No handler matched, dropping update", extra={"update_id": update.update_id, "kind": kind})
            return False

        if self._mode is DispatchMode.CONCURRENT:
            self._spawn(update, handler, payload)
        else:
            await self._invoke(update, handler, payload)
        return True

    async def drain(self) -> None:
        """Wait until every scheduled handler task has finished."""
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    # ── internals ────────────────────────────────────────────────────────

    async def _invoke(self, update: Update, handler: Handler, payload: Any) -> None:
        async def call_handler() -> None:
            await _call_handler(handler, payload)

        call: CallNext = call_handler
        for middleware in reversed(self._middlewares):
            call = functools.partial(middleware, update, call)

        try:
            await call()
        except Exception:
            logger.exception(
                "Handler failed",
                extra={
                    "update_id": update.update_id,
                    "kind": update.kind.value if update.kind else None,
                    "handler": _handler_name(handler),
                },
            )

    def _spawn(self, update: Update, handler: Handler, payload: Any) -> None:
        key = update.conversation_key()
        previous = self._tails.get(key) if key is not None else None
        task = asyncio.create_task(self._invoke_after(previous, update, handler, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if key is not None:
            self._tails[key] = task
            task.add_done_callback(functools.partial(self._forget_tail, key))

    async def _invoke_after(
        self,
        previous: Optional[asyncio.Task],
        update: Update,
        handler: Handler,
        payload: Any,
    ) -> None:
        if previous is not None:
            await asyncio.wait({previous})
        await self._invoke(update, handler, payload)

    def _forget_tail(self, key: int, task: asyncio.Task) -> None:
        if self._tails.get(key) is task:
            del self._tails[key]
