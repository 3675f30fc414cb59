"""CLI command modules."""

from prism.cli.commands import health, notifications, serve

__all__ = [
    "health",
    "notifications",
    "serve",
]
