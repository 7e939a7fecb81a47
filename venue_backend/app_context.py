"""Process-wide dependencies shared by the routers and the billing repository.

``main`` registers the database connection factory and the bearer-token actor
resolver at import time; modules that cannot import ``main`` without a cycle
look them up here.
"""
from __future__ import annotations

from typing import Any, Callable, Dict

_registry: Dict[str, Callable[..., Any]] = {}


def configure(
    *,
    get_conn: Callable[[], Any],
    get_current_actor: Callable[..., Any],
) -> None:
    _registry["get_conn"] = get_conn
    _registry["get_current_actor"] = get_current_actor


def is_configured() -> bool:
    return {"get_conn", "get_current_actor"} <= _registry.keys()


def _lookup(name: str) -> Callable[..., Any]:
    try:
        return _registry[name]
    except KeyError:
        raise RuntimeError(f"{name} has not been registered; import venue_backend.main first") from None


def get_conn() -> Any:
    return _lookup("get_conn")()


def get_current_actor(**kwargs: Any) -> Any:
    return _lookup("get_current_actor")(**kwargs)
