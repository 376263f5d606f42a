"""Stackr collection sync, discovery cache and suggestion service."""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = ["app", "create_app", "settings"]

_LAZY_SOURCES = {"app": "app.main", "create_app": "app.main", "settings": "app.config"}


def __getattr__(name: str) -> Any:
    source = _LAZY_SOURCES.get(name)
    if source is None:
        raise AttributeError(f"module 'app' has no attribute {name}")
    return getattr(import_module(source), name)
