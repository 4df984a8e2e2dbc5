from __future__ import annotations

import importlib
from collections.abc import Iterator
from typing import Final

from fastapi import APIRouter

__all__ = ["ROUTER_MODULES", "load_routers"]

# Mount order is the order routes appear in the OpenAPI document.
ROUTER_MODULES: Final[tuple[str, ...]] = (
    "health",
    "referrals",
    "wallet",
    "points",
    "admin",
)


def load_routers(modules: tuple[str, ...] = ROUTER_MODULES) -> Iterator[APIRouter]:
    """Yield the ``router`` of each registered route module."""

    for name in modules:
        module = importlib.import_module(f"{__name__}.{name}")
        router = getattr(module, "router", None)
        if not isinstance(router, APIRouter):
            raise RuntimeError(f"Route module {module.__name__!r} exposes no APIRouter")
        yield router
