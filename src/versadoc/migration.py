"""Payload migration: upgrader decorator, registry helpers, chain builder."""

from __future__ import annotations

import copy
import importlib
from typing import Any, Callable, Iterable, Mapping

from versadoc.errors import (
    MigrationError,
    MissingUpgraderError,
    SchemaViolationError,
    UnknownVersionError,
    VersadocError,
)

__all__ = [
    "UpgraderFn",
    "upgrader",
    "collect_upgraders",
    "load_upgraders",
    "detect_version",
    "chain_upgraders",
]

UpgraderFn = Callable[[dict[str, Any]], dict[str, Any]]

# Payloads written before versioning existed carry no "version" key.
UNVERSIONED = 1


# --- Upgrader decorator ---


def upgrader(from_version: int, *, type_name: str | None = None) -> Callable[[UpgraderFn], UpgraderFn]:
    """Decorator marking a function as the ``from_version -> from_version + 1`` transform.

    The decorated function takes the old payload dict and returns the new one.
    It must be pure: set every new field to an explicit default, rename or
    restructure fields, and drop fields the next version no longer has.

    Example::

        @upgrader(1, type_name="projects")
        def projects_v1_to_v2(data: dict) -> dict:
            data["members"] = [data.pop("owner")]
            data["priority"] = 5
            return data
    """
    if isinstance(from_version, bool) or not isinstance(from_version, int) or from_version < 1:
        raise MigrationError(f"from_version must be a positive integer, got {from_version!r}")

    def decorator(func: UpgraderFn) -> UpgraderFn:
        func._versadoc_upgrader = {  # type: ignore[attr-defined]
            "type_name": type_name,
            "from_version": from_version,
        }
        return func

    return decorator


def _upgrader_meta(func: Any) -> dict[str, Any] | None:
    return getattr(func, "_versadoc_upgrader", None)


def collect_upgraders(
    functions: Iterable[UpgraderFn] | Mapping[int, UpgraderFn],
    *,
    type_name: str | None = None,
) -> dict[int, UpgraderFn]:
    """Index upgraders by ``from_version``.

    Accepts either a mapping ``{from_version: fn}`` or an iterable of
    ``@upgrader``-decorated functions. Functions tagged for a different type
    are rejected. Raises MigrationError on duplicate ``from_version``.
    """
    if isinstance(functions, Mapping):
        return dict(functions)

    registry: dict[int, UpgraderFn] = {}
    for func in functions:
        meta = _upgrader_meta(func)
        if meta is None:
            raise MigrationError(f"{func.__qualname__} is not decorated with @upgrader")
        tagged = meta["type_name"]
        if type_name is not None and tagged is not None and tagged != type_name:
            raise MigrationError(
                f"{func.__qualname__} upgrades '{tagged}', not '{type_name}'"
            )
        v = meta["from_version"]
        if v in registry:
            raise MigrationError(
                f"Duplicate upgrader for {type_name or tagged} from_version={v}: "
                f"{registry[v].__qualname__} and {func.__qualname__}"
            )
        registry[v] = func
    return registry


def load_upgraders(module_path: str, type_name: str) -> dict[int, UpgraderFn]:
    """Import a module and collect its ``@upgrader`` functions for ``type_name``."""
    module = importlib.import_module(module_path)
    found = []
    for attr_name in dir(module):
        obj = getattr(module, attr_name)
        meta = _upgrader_meta(obj)
        if meta is None or meta["type_name"] != type_name:
            continue
        found.append(obj)
    return collect_upgraders(found, type_name=type_name)


# --- Version detection ---


def detect_version(payload: Any, type_name: str) -> int:
    """Return the schema version a raw payload claims to be at.

    A missing (or null) ``version`` means version 1. Anything that is not a
    plain integer is rejected rather than guessed.
    """
    if not isinstance(payload, Mapping):
        raise SchemaViolationError(
            type_name, None, [f"<root>: expected an object, got {type(payload).__name__}"]
        )
    raw = payload.get("version")
    if raw is None:
        return UNVERSIONED
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise UnknownVersionError(type_name, raw)
    return raw


# --- Chain builder ---


def chain_upgraders(
    registry: Mapping[int, UpgraderFn],
    type_name: str,
    from_version: int,
    to_version: int,
) -> Callable[[Mapping[str, Any]], dict[str, Any]]:
    """Build a composed upgrader from ``from_version`` to ``to_version``.

    Validates that every step exists; raises MissingUpgraderError otherwise.
    Each step works on a private copy and its output is stamped with the next
    version number, so versions strictly increase along the chain.
    """
    missing = [v for v in range(from_version, to_version) if v not in registry]
    if missing:
        raise MissingUpgraderError({type_name: missing})
    steps = [(v, registry[v]) for v in range(from_version, to_version)]

    def composed(payload: Mapping[str, Any]) -> dict[str, Any]:
        result = copy.deepcopy(dict(payload))
        for v, fn in steps:
            try:
                result = fn(result)
            except VersadocError:
                raise
            except Exception as e:
                # Upgraders only see old-shape payloads; any crash means the input was malformed.
                raise SchemaViolationError(
                    type_name, v, [f"upgrader {fn.__qualname__} failed: {e!r}"]
                ) from e
            if not isinstance(result, dict):
                raise MigrationError(
                    f"Upgrader {fn.__qualname__} for {type_name} v{v} returned "
                    f"{type(result).__name__}, expected dict"
                )
            result["version"] = v + 1
            result["typeName"] = type_name
        return result

    return composed
