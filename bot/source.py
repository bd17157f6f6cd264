"""Mutual exclusion between update sources.

The Bot API refuses ``getUpdates`` while a webhook is set, and a webhook
delivers nothing to a poller.  :class:`UpdateSourceGuard` makes the choice
explicit on this side as well: one guard exists per bot endpoint, and a
source must acquire it before it starts receiving updates.
"""

from __future__ import annotations

import threading
from typing import Any, ClassVar, Optional

from bot.exceptions import ConfigurationError
from sdk.client import CourierClient


class UpdateSourceGuard:
    """Ownership token for "the" update source of one bot."""

    _guards: ClassVar[dict[str, "UpdateSourceGuard"]] = {}
    _guards_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._owner: Optional[Any] = None

    @classmethod
    def for_client(cls, client: CourierClient) -> "UpdateSourceGuard":
        """Return the process-wide guard for the bot *client* talks to."""
        with cls._guards_lock:
            guard = cls._guards.get(client.api_url)
            if guard is None:
                guard = cls._guards[client.api_url] = cls()
            return guard

    @property
    def owner(self) -> Optional[Any]:
        return self._owner

    @property
    def active(self) -> bool:
        return self._owner is not None

    def acquire(self, owner: Any) -> None:
        """Make *owner* the active source.

        Re-acquiring by the current owner is a no-op.

        Raises:
            ConfigurationError: If a different source is already active.
        """
        with self._lock:
            if self._owner is not None and self._owner is not owner:
                raise ConfigurationError(
                    f"cannot start {type(owner).__name__}: "
                    f"{type(self._owner).__name__} is already receiving updates"
                )
            self._owner = owner

    def release(self, owner: Any) -> None:
        """Give up ownership; releasing a guard you do not hold does nothing."""
        with self._lock:
            if self._owner is owner:
                self._owner = None
