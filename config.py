"""Application configuration — environment variables and derived constants.

Loads ``BOT_TOKEN`` and the poller / webhook / dispatch settings from the
environment via ``python-dotenv``.  All values are resolved at import time
so other modules can ``from config import …`` without repeated lookups.
"""

# ── stdlib ───────────────────────────────────────────────────────────────────
import os

# ── third-party ──────────────────────────────────────────────────────────────
from dotenv import load_dotenv

# ── project ──────────────────────────────────────────────────────────────────
from bot.dispatcher import DispatchMode
from bot.poller import PollerConfig
from bot.webhook import WebhookConfig
from core.logger import CourierLogger
from sdk.client import DEFAULT_BASE_URL

# ── Environment bootstrap ────────────────────────────────────────────────────
load_dotenv()

LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO").upper()

# ── Logger (used for startup diagnostics at the bottom of this module) ───────
logger = CourierLogger.set_level(LOG_LEVEL)


# ── Helper functions (private) ───────────────────────────────────────────────


def _env_int(name: str, default: int) -> int:
    """Read an integer variable; invalid values fall back to *default* with a warning."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer environment value", extra={"variable": name, "value": raw})
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric environment value", extra={"variable": name, "value": raw})
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _parse_csv(raw: str | None) -> tuple[str, ...] | None:
    """Parse ``"message,callback_query"`` into a tuple; empty means "not set"."""
    if not raw:
        return None
    items = tuple(token.strip() for token in raw.split(",") if token.strip())
    return items or None


def _parse_dispatch_mode(raw: str | None) -> DispatchMode:
    try:
        return DispatchMode((raw or DispatchMode.SEQUENTIAL.value).strip().lower())
    except ValueError:
        logger.warning("Unknown DISPATCH_MODE, using sequential", extra={"value": raw})
        return DispatchMode.SEQUENTIAL


# ── Public constants ─────────────────────────────────────────────────────────

BOT_TOKEN: str | None = os.environ.get("BOT_TOKEN")
API_BASE_URL: str = os.environ.get("API_BASE_URL", DEFAULT_BASE_URL)
REQUEST_TIMEOUT: int = _env_int("REQUEST_TIMEOUT", 10)
DISPATCH_MODE: DispatchMode = _parse_dispatch_mode(os.environ.get("DISPATCH_MODE"))
ALLOWED_UPDATES: tuple[str, ...] | None = _parse_csv(os.environ.get("ALLOWED_UPDATES"))

POLL_BUFFER_SIZE: int = _env_int("POLL_BUFFER_SIZE", 100)
POLL_TIMEOUT: int = _env_int("POLL_TIMEOUT", 30)
POLL_INITIAL_OFFSET: int = _env_int("POLL_INITIAL_OFFSET", 0)
POLL_BACKOFF_CEILING: float = _env_float("POLL_BACKOFF_CEILING", 30.0)

WEBHOOK_URL: str | None = os.environ.get("WEBHOOK_URL")
WEBHOOK_CERTIFICATE: str | None = os.environ.get("WEBHOOK_CERTIFICATE")
WEBHOOK_TLS_KEY: str | None = os.environ.get("WEBHOOK_TLS_KEY")
WEBHOOK_LISTEN_HOST: str = os.environ.get("WEBHOOK_LISTEN_HOST", "0.0.0.0")
WEBHOOK_LISTEN_PORT: int = _env_int("WEBHOOK_LISTEN_PORT", 8443)
WEBHOOK_PATH: str = os.environ.get("WEBHOOK_PATH", "/webhook")
WEBHOOK_SECRET_TOKEN: str | None = os.environ.get("WEBHOOK_SECRET_TOKEN") or None
WEBHOOK_DROP_PENDING: bool = _env_bool("WEBHOOK_DROP_PENDING", False)


def poller_config() -> PollerConfig:
    """Build a :class:`PollerConfig` from the environment."""
    return PollerConfig(
        buffer_size=POLL_BUFFER_SIZE,
        long_poll_timeout=POLL_TIMEOUT,
        initial_offset=POLL_INITIAL_OFFSET,
        backoff_ceiling=POLL_BACKOFF_CEILING,
        allowed_updates=ALLOWED_UPDATES,
    )


def webhook_config() -> WebhookConfig:
    """Build a :class:`WebhookConfig` from the environment.

    Raises:
        EnvironmentError: If ``WEBHOOK_URL`` is not set.
    """
    if not WEBHOOK_URL:
        raise EnvironmentError("WEBHOOK_URL environment variable is not set or is empty.")
    return WebhookConfig(
        url=WEBHOOK_URL,
        certificate=WEBHOOK_CERTIFICATE,
        listen_host=WEBHOOK_LISTEN_HOST,
        listen_port=WEBHOOK_LISTEN_PORT,
        path=WEBHOOK_PATH,
        tls_key=WEBHOOK_TLS_KEY,
        secret_token=WEBHOOK_SECRET_TOKEN,
        allowed_updates=ALLOWED_UPDATES,
        drop_pending_updates=WEBHOOK_DROP_PENDING,
    )


# ── Startup diagnostics ─────────────────────────────────────────────────────

if BOT_TOKEN:
    logger.info("Config loaded — BOT_TOKEN is set", extra={"api_base_url": API_BASE_URL})
else:
    logger.warning("Config loaded — BOT_TOKEN is NOT set")

logger.info(
    "Update source settings resolved",
    extra={"dispatch_mode": DISPATCH_MODE.value, "poll_timeout": POLL_TIMEOUT,
           "webhook_url": WEBHOOK_URL, "allowed_updates": ALLOWED_UPDATES},
)
