"""Prism - timer and notification orchestration core."""

from prism.services import CoreServices, build_core_services

__version__ = "0.1.0"

__all__ = [
    "CoreServices",
    "build_core_services",
]
