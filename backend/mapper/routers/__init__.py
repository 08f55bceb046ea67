from . import (
    entry,
    health,
    pending,
    settings,
)

__all__ = [
    "entry",
    "health",
    "pending",
    "settings",
]
