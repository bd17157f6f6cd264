"""Errors raised by the update sources and the handler registry."""

from typing import Optional


class ConfigurationError(Exception):
    """An update source or the registry was used in a state that forbids it.

    Examples: starting a poller while a webhook receiver is registered,
    registering a handler while an update source is running.
    """


class PollerFatalError(Exception):
    """The poller gave up after repeated categorically fatal API errors.

    Attributes:
        last_error: The error returned by the final failed ``getUpdates`` call.
        attempts: How many consecutive fatal errors were seen.
    """

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"polling stopped after {attempts} consecutive fatal errors: {last_error}")
