"""Middleware package for the Battle Arena engine."""

from battle_arena.middleware.error_handler import setup_error_handlers

__all__ = [
    "setup_error_handlers",
]
