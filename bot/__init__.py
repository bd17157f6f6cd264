"""Update acquisition and dispatch — registry, dispatcher, poller, webhook receiver.

This package may import from ``core/`` and ``sdk/`` only.
"""

from bot.dispatcher import Dispatcher, DispatchMode
from bot.exceptions import ConfigurationError, PollerFatalError
from bot.poller import Poller, PollerConfig
from bot.registry import HandlerEntry, HandlerRegistry, MatchTier, RouteMatch, registry
from bot.source import UpdateSourceGuard
from bot.webhook import WebhookConfig, WebhookReceiver

__all__ = [
    # Routing
    "registry",
    "HandlerRegistry",
    "HandlerEntry",
    "MatchTier",
    "RouteMatch",
    "Dispatcher",
    "DispatchMode",
    # Update sources
    "Poller",
    "PollerConfig",
    "WebhookReceiver",
    "WebhookConfig",
    "UpdateSourceGuard",
    # Errors
    "ConfigurationError",
    "PollerFatalError",
]
