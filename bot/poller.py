"""Long-polling update source.

The poller owns the offset cursor.  Each round it asks ``getUpdates`` for
everything from the cursor on, hands every decoded update to the
dispatcher in ascending ``update_id`` order, and only then moves the cursor
to ``max(update_id) + 1``, which acknowledges the batch to the server.  A
crash while dispatching therefore means the batch is delivered again;
updates are never skipped.

Failures never hot-loop: network, decode and ordinary API errors wait an
exponentially growing delay (capped at ``backoff_ceiling``) before the next
attempt, or the ``retry_after`` the server asked for.  Errors that cannot
heal by waiting (bad token, conflicting webhook) end the loop after
``fatal_error_limit`` of them in a row.
"""

import asyncio
import dataclasses
from typing import Any, Optional

from bot.dispatcher import Dispatcher
from bot.exceptions import ConfigurationError, PollerFatalError
from bot.source import UpdateSourceGuard
from core.logger import CourierLogger
from sdk.client import CourierClient
from sdk.exceptions import APIException, CourierError, DecodeError, TransportError
from sdk.models import decode_update

logger = CourierLogger.get_logger()

# 401: bad token, 404: no such bot, 409: webhook set / another poller running.
FATAL_ERROR_CODES: frozenset[int] = frozenset({401, 404, 409})


@dataclasses.dataclass(frozen=True)
class PollerConfig:
    """Poller tuning.

    ``buffer_size``: max updates per ``getUpdates`` batch (1-100).
    ``long_poll_timeout``: seconds the server may hold one request open.
    ``initial_offset``: first offset to request (0 = nothing acknowledged yet).
    ``backoff_initial`` / ``backoff_ceiling``: retry delay range in seconds.
    ``fatal_error_limit``: consecutive fatal API errors before giving up.
    ``allowed_updates``: update kinds to subscribe to (``None`` = server default).
    ``drop_webhook``: delete a registered webhook on start instead of refusing to start.
    """

    buffer_size: int = 100
    long_poll_timeout: int = 30
    initial_offset: int = 0
    backoff_initial: float = 1.0
    backoff_ceiling: float = 30.0
    fatal_error_limit: int = 3
    allowed_updates: Optional[tuple[str, ...]] = None
    drop_webhook: bool = True

    def __post_init__(self) -> None:
        if not 1 <= self.buffer_size <= 100:
            raise ConfigurationError(f"buffer_size must be between 1 and 100, got {self.buffer_size}")
        if self.long_poll_timeout < 0:
            raise ConfigurationError("long_poll_timeout must not be negative")
        if self.initial_offset < 0:
            raise ConfigurationError("initial_offset must not be negative")
        if self.backoff_initial <= 0 or self.backoff_ceiling < self.backoff_initial:
            raise ConfigurationError("backoff_initial must be positive and not exceed backoff_ceiling")
        if self.fatal_error_limit < 1:
            raise ConfigurationError("fatal_error_limit must be at least 1")

    def backoff(self, failures: int) -> float:
        """Delay before retry number *failures* (1-based)."""
        return min(self.backoff_ceiling, self.backoff_initial * 2 ** (failures - 1))


class Poller:
    """Pulls updates with ``getUpdates`` and feeds them to a :class:`Dispatcher`.

    Usage::

        poller = Poller(client, dispatcher, PollerConfig(long_poll_timeout=25))
        await poller.start()
        ...
        await poller.stop()
    """

    def __init__(
        self,
        client: CourierClient,
        dispatcher: Dispatcher,
        config: Optional[PollerConfig] = None,
        *,
        guard: Optional[UpdateSourceGuard] = None,
    ) -> None:
        self._client = client
        self._dispatcher = dispatcher
        self._config = config or PollerConfig()
        self._guard = guard or UpdateSourceGuard.for_client(client)
        self._offset = self._config.initial_offset
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._starting = False
        self._in_request = False
        self._fatal_error: Optional[PollerFatalError] = None

    # ── state ────────────────────────────────────────────────────────────

    @property
    def offset(self) -> int:
        """Next update id to request; everything below it is acknowledged."""
        return self._offset

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def fatal_error(self) -> Optional[PollerFatalError]:
        return self._fatal_error

    @property
    def config(self) -> PollerConfig:
        return self._config

    # ── lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the polling loop as a background task.

        Concurrent calls start one loop.  A :meth:`stop` that arrives while
        the webhook is being cleared cancels the start.

        Raises:
            ConfigurationError: If another update source is active, or the
                remote webhook could not be cleared.  The loop is not started.
        """
        if self.running or self._starting:
            return
        self._guard.acquire(self)
        self._starting = True
        self._stop_event = asyncio.Event()
        try:
            await self._clear_webhook()
        except BaseException:
            self._guard.release(self)
            raise
        finally:
            self._starting = False

        if self._stop_event.is_set():
            self._guard.release(self)
            logger.info("Poller stopped before its loop started", extra={"offset": self._offset})
            return

        self._dispatcher.registry.freeze()
        self._fatal_error = None
        self._task = asyncio.create_task(self._loop(), name="courier-poller")
        logger.info(
            "Poller started",
            extra={"offset": self._offset, "buffer_size": self._config.buffer_size,
                   "long_poll_timeout": self._config.long_poll_timeout},
        )

    async def stop(self) -> None:
        """Stop polling and wait for the loop to exit.

        A long-poll request in flight is cancelled at once and its result
        discarded, so the cursor stays where it was.  A batch that is being
        dispatched is finished and acknowledged first.  Idempotent.
        """
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is None:
            return
        if self._in_request:
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._stop_event.is_set():
                raise
        logger.info("Poller stopped", extra={"offset": self._offset})

    async def wait(self) -> None:
        """Block until the loop ends.

        Raises:
            PollerFatalError: If the loop ended because of repeated fatal errors.
        """
        if self._task is not None:
            await asyncio.shield(self._task)
        if self._fatal_error is not None:
            raise self._fatal_error

    async def run(self) -> None:
        """Start and block until stopped (or until a fatal error is raised)."""
        await self.start()
        await self.wait()

    async def _clear_webhook(self) -> None:
        try:
            if self._config.drop_webhook:
                await asyncio.to_thread(self._client.delete_webhook)
                return
            info = await asyncio.to_thread(self._client.get_webhook_info)
        except CourierError as exc:
            raise ConfigurationError(f"could not verify webhook state before polling: {exc}") from exc
        if info.url:
            raise ConfigurationError(f"a webhook is registered ({info.url}); delete it before polling")

    # ── loop ─────────────────────────────────────────────────────────────

    async def _loop(self) -> None:
        assert self._stop_event is not None
        failures = 0
        fatal_streak = 0
        try:
            while not self._stop_event.is_set():
                try:
                    raw_updates = await self._fetch()
                except asyncio.CancelledError:
                    if self._stop_event.is_set():
                        break
                    raise
                except APIException as exc:
                    failures += 1
                    if exc.error_code in FATAL_ERROR_CODES:
                        fatal_streak += 1
                        logger.error(
                            "getUpdates rejected",
                            extra={"error_code": exc.error_code, "error": exc.description,
                                   "fatal_streak": fatal_streak},
                        )
                        if fatal_streak >= self._config.fatal_error_limit:
                            self._fatal_error = PollerFatalError(fatal_streak, exc)
                            logger.critical("Poller giving up", extra={"error": str(exc), "offset": self._offset})
                            break
                    else:
                        fatal_streak = 0
                        logger.warning("getUpdates API error", extra={"error_code": exc.error_code, "error": exc.description})
                    await self._sleep(exc.retry_after or self._config.backoff(failures))
                    continue
                except (TransportError, DecodeError) as exc:
                    failures += 1
                    fatal_streak = 0
                    delay = self._config.backoff(failures)
                    logger.warning("getUpdates failed, backing off", extra={"error": str(exc), "retry_in": delay})
                    await self._sleep(delay)
                    continue

                failures = fatal_streak = 0
                await self._handle_batch(raw_updates)
        finally:
            self._dispatcher.registry.thaw()
            self._guard.release(self)

    async def _fetch(self) -> list[Any]:
        config = self._config
        self._in_request = True
        try:
            return await asyncio.to_thread(
                self._client.get_updates,
                offset=self._offset,
                limit=config.buffer_size,
                timeout=config.long_poll_timeout,
                allowed_updates=config.allowed_updates,
            )
        finally:
            self._in_request = False

    async def _sleep(self, delay: float) -> None:
        """Wait *delay* seconds, waking early when :meth:`stop` is called."""
        assert self._stop_event is not None
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _handle_batch(self, raw_updates: list[Any]) -> None:
        if not raw_updates:
            return
        highest: Optional[int] = None
        updates = []
        for raw in raw_updates:
            update_id = raw.get("update_id") if isinstance(raw, dict) else None
            if isinstance(update_id, int):
                highest = update_id if highest is None else max(highest, update_id)
            try:
                updates.append(decode_update(raw))
            except DecodeError as exc:
                logger.warning("Dropping undecodable update", extra={"update_id": update_id, "error": str(exc)})

        updates.sort(key=lambda update: update.update_id)
        logger.debug("Received updates", extra={"count": len(raw_updates), "offset": self._offset})
        for update in updates:
            await self._dispatcher.dispatch(update)

        if highest is not None:
            self._offset = max(self._offset, highest + 1)
