"""Handler registry — the route table the dispatcher consults.

Handlers are registered with decorators before an update source starts.
While a source is running the registry is frozen, so routes never change
under a dispatch in progress and lookups need no locking.

Matching, per update kind:

- Message kinds (``message``, ``edited_message``, channel posts): the
  text (or caption) is tried against command entries first (the leading
  ``/token`` with any ``@botname`` suffix removed, exact and
  case-sensitive), then prefix entries, then predicate entries.
- ``callback_query``: the callback ``data`` is tried against exact-data
  entries, then prefix entries, then predicate entries.
- Every other kind: the single handler registered for it.

Within a tier the first entry in registration order wins.

Usage::

    registry = HandlerRegistry()

    @registry.command("/start", description="Say hello")
    async def start(message: Message) -> None: ...

    @registry.text()                     # catch-all for plain text
    async def echo(message: Message) -> None: ...
"""

from __future__ import annotations

import dataclasses
import enum
import re
import threading
from typing import (
    Any,
    Awaitable,
    Callable,
    Iterable,
    Optional,
    Union,
)

from bot.exceptions import ConfigurationError
from core.logger import CourierLogger
from sdk.models import MESSAGE_KINDS, Update, UpdateKind

logger = CourierLogger.get_logger()

# ── Types ────────────────────────────────────────────────────────────────────

# Receives the update payload (``Message``, ``CallbackQuery``, …).  Coroutine
# functions are awaited; plain callables run in a worker thread.
Handler = Callable[[Any], Union[Awaitable[None], None]]
Predicate = Callable[[str], bool]


class MatchTier(enum.IntEnum):
    """Specificity order; lower tiers are tried first."""

    COMMAND = 0    # exact command token / exact callback data
    PREFIX = 1
    PREDICATE = 2  # regex, predicate, or catch-all


# ── Registry entries ─────────────────────────────────────────────────────────


@dataclasses.dataclass(frozen=True, slots=True)
class HandlerEntry:
    """One route: which updates it applies to and what to call."""

    kind: UpdateKind
    tier: MatchTier
    handler: Handler
    pattern: Optional[str] = None             # command token, prefix, data, or regex source
    predicate: Optional[Predicate] = None     # PREDICATE tier only; None means catch-all
    description: str = ""

    def matches(self, value: str) -> bool:
        if self.tier is MatchTier.COMMAND:
            return value == self.pattern
        if self.tier is MatchTier.PREFIX:
            return value.startswith(self.pattern or "")
        return self.predicate is None or bool(self.predicate(value))


@dataclasses.dataclass(frozen=True, slots=True)
class RouteMatch:
    """Result of matching one update: the entry and the payload to pass it."""

    entry: HandlerEntry
    payload: Any


def command_token(text: str) -> Optional[str]:
    """Return ``/cmd`` from ``"/cmd@SomeBot arg"``, or ``None`` when *text* is not a command."""
    if not text.startswith("/"):
        return None
    return text.split()[0].split("@")[0]


# ── Registry ─────────────────────────────────────────────────────────────────


class HandlerRegistry:
    """Ordered route table, write-once per run."""

    def __init__(self) -> None:
        self._entries: dict[UpdateKind, list[HandlerEntry]] = {}
        self._unhandled: Optional[Handler] = None
        self._freeze_count = 0
        self._lock = threading.Lock()

    # ── lifecycle ────────────────────────────────────────────────────────

    @property
    def frozen(self) -> bool:
        return self._freeze_count > 0

    def freeze(self) -> None:
        """Reject further registrations (called when an update source starts).

        Calls nest: sources sharing this registry each freeze it once, and
        it stays frozen until every one of them has called :meth:`thaw`.
        """
        with self._lock:
            self._freeze_count += 1

    def thaw(self) -> None:
        """Undo one :meth:`freeze` (called when an update source stops)."""
        with self._lock:
            if self._freeze_count > 0:
                self._freeze_count -= 1

    def _add(self, entry: HandlerEntry) -> None:
        with self._lock:
            if self._freeze_count:
                raise ConfigurationError("cannot register handlers while an update source is running")
            self._entries.setdefault(entry.kind, []).append(entry)
        logger.debug(
            "Handler registered",
            extra={"kind": entry.kind.value, "tier": entry.tier.name, "pattern": entry.pattern},
        )

    def _register_many(
        self,
        kinds: Iterable[UpdateKind],
        tier: MatchTier,
        pattern: Optional[str] = None,
        predicate: Optional[Predicate] = None,
        description: str = "",
    ) -> Callable[[Handler], Handler]:
        kinds = tuple(kinds)
        for kind in kinds:
            if kind not in MESSAGE_KINDS:
                raise ConfigurationError(f"text routes only apply to message kinds, not {kind.value}")

        def decorator(func: Handler) -> Handler:
            for kind in kinds:
                self._add(HandlerEntry(kind, tier, func, pattern, predicate, description))
            return func
        return decorator

    # ── decorators: message kinds ────────────────────────────────────────

    def command(
        self,
        name: str,
        *,
        kinds: Iterable[UpdateKind] = (UpdateKind.MESSAGE,),
        description: str = "",
    ) -> Callable[[Handler], Handler]:
        """Route messages whose first token is exactly *name* (``/`` optional)."""
        token = name if name.startswith("/") else f"/{name}"
        if len(token) < 2 or "@" in token or any(ch.isspace() for ch in token):
            raise ConfigurationError(f"invalid command name: {name!r}")
        return self._register_many(kinds, MatchTier.COMMAND, pattern=token, description=description)

    def prefix(
        self,
        text: str,
        *,
        kinds: Iterable[UpdateKind] = (UpdateKind.MESSAGE,),
    ) -> Callable[[Handler], Handler]:
        """Route messages whose text starts with *text*."""
        if not text:
            raise ConfigurationError("prefix must not be empty; use text() for a catch-all")
        return self._register_many(kinds, MatchTier.PREFIX, pattern=text)

    def text(
        self,
        pattern: Optional[str] = None,
        *,
        predicate: Optional[Predicate] = None,
        kinds: Iterable[UpdateKind] = (UpdateKind.MESSAGE,),
    ) -> Callable[[Handler], Handler]:
        """Route messages matching regex *pattern* (searched), *predicate*, or anything."""
        if pattern is not None and predicate is not None:
            raise ConfigurationError("pass either a pattern or a predicate, not both")
        if pattern is not None:
            compiled = re.compile(pattern)
            predicate = lambda value: compiled.search(value) is not None  # noqa: E731
        return self._register_many(kinds, MatchTier.PREDICATE, pattern=pattern, predicate=predicate)

    # ── decorators: callback queries ─────────────────────────────────────

    def callback(
        self,
        data: Optional[str] = None,
        *,
        prefix: Optional[str] = None,
        predicate: Optional[Predicate] = None,
    ) -> Callable[[Handler], Handler]:
        """Route callback queries by exact *data*, *prefix*, *predicate*, or all of them."""
        given = [arg for arg in (data, prefix, predicate) if arg is not None]
        if len(given) > 1:
            raise ConfigurationError("pass at most one of data, prefix, predicate")
        if data is not None:
            tier, pattern = MatchTier.COMMAND, data
        elif prefix is not None:
            tier, pattern = MatchTier.PREFIX, prefix
        else:
            tier, pattern = MatchTier.PREDICATE, None

        def decorator(func: Handler) -> Handler:
            self._add(HandlerEntry(UpdateKind.CALLBACK_QUERY, tier, func, pattern, predicate))
            return func
        return decorator

    # ── decorators: everything else ──────────────────────────────────────

    def on(self, kind: UpdateKind) -> Callable[[Handler], Handler]:
        """Route every update of *kind* to the decorated handler.

        For message and callback kinds this is a catch-all in the predicate
        tier.  Other kinds accept exactly one handler.
        """
        def decorator(func: Handler) -> Handler:
            if kind not in MESSAGE_KINDS and kind is not UpdateKind.CALLBACK_QUERY and self._entries.get(kind):
                raise ConfigurationError(f"a handler for {kind.value} is already registered")
            self._add(HandlerEntry(kind, MatchTier.PREDICATE, func))
            return func
        return decorator

    def unhandled(self) -> Callable[[Handler], Handler]:
        """Register the hook that receives every :class:`Update` no route matched."""
        def decorator(func: Handler) -> Handler:
            with self._lock:
                if self._freeze_count:
                    raise ConfigurationError("cannot register handlers while an update source is running")
                self._unhandled = func
            return func
        return decorator

    # ── lookup helpers ───────────────────────────────────────────────────

    @property
    def unhandled_handler(self) -> Optional[Handler]:
        return self._unhandled

    def entries(self, kind: Optional[UpdateKind] = None) -> list[HandlerEntry]:
        """Return a copy of the entries, all of them or those for *kind*."""
        if kind is not None:
            return list(self._entries.get(kind, ()))
        return [entry for entries in self._entries.values() for entry in entries]

    def commands(self) -> dict[str, str]:
        """Return ``{"/cmd": description}`` for plain-message commands, in registration order."""
        return {
            entry.pattern: entry.description
            for entry in self._entries.get(UpdateKind.MESSAGE, ())
            if entry.tier is MatchTier.COMMAND and entry.pattern is not None
        }

    def match(self, update: Update) -> Optional[RouteMatch]:
        """Return the route for *update*, or ``None`` when nothing applies."""
        kind = update.kind
        if kind is None:
            return None
        payload = update.payload
        entries = self._entries.get(kind)
        if not entries:
            return None

        if kind in MESSAGE_KINDS:
            value = payload.text or payload.caption or ""
            token = command_token(value)
        elif kind is UpdateKind.CALLBACK_QUERY:
            value = payload.data or ""
            token = value
        else:
            return RouteMatch(entries[0], payload)

        for tier in MatchTier:
            candidate = token if tier is MatchTier.COMMAND else value
            if candidate is None:
                continue
            for entry in entries:
                if entry.tier is tier and entry.matches(candidate):
                    return RouteMatch(entry, payload)
        return None


# Module-level default for single-bot programs.
registry = HandlerRegistry()
