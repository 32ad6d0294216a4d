"""HTTP routers."""

from . import health, vocabulary

__all__ = [
    "health",
    "vocabulary",
]
