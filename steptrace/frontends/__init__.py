"""Deterministic tree-sitter frontends for the supported guest languages."""

from __future__ import annotations

import importlib

from ._base import BaseFrontend
from .python import PythonFrontend

# Lazy imports to avoid loading all frontends at startup
_FRONTEND_CLASSES: dict[str, str] = {
    "python": "python.PythonFrontend",
    "javascript": "javascript.JavaScriptFrontend",
}


def get_deterministic_frontend(language: str) -> BaseFrontend:
    """Instantiate the deterministic frontend for *language*.

    Raises ``ValueError`` if *language* has no registered frontend.
    """
    qualname = _FRONTEND_CLASSES.get(language)
    if qualname is None:
        raise ValueError(f"Unsupported language for deterministic frontend: {language}")
    module_name, class_name = qualname.split(".")
    mod = importlib.import_module(f".{module_name}", package=__package__)
    cls = getattr(mod, class_name)
    return cls()


SUPPORTED_DETERMINISTIC_LANGUAGES: tuple[str, ...] = tuple(_FRONTEND_CLASSES.keys())

__all__ = [
    "BaseFrontend",
    "PythonFrontend",
    "get_deterministic_frontend",
    "SUPPORTED_DETERMINISTIC_LANGUAGES",
]
