"""CLI package for interacting with the PV informant service."""

from importlib import import_module
from types import ModuleType


def __getattr__(name: str) -> ModuleType:
    if name == "app":
        return import_module("cli.app")
    raise AttributeError(name)

# ``cli.app`` stays the module so tests can patch ``cli.app.ApiClient``; the
# Typer instance is ``cli.app.app``.

__all__ = []
