"""Framework-agnostic infrastructure shared by every layer.

This package must NEVER import from ``bot/`` or ``sdk/``.
"""

from core.logger import CourierLogger

__all__ = [
    "CourierLogger",
]
