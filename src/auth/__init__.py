"""Authentication module."""

from src.auth.dependencies import require_api_key

__all__ = [
    "require_api_key",
]
