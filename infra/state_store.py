"""Best-effort persistence of app state slots; failures are logged, never raised."""

from __future__ import annotations

import logging
from typing import Any

from infra.kv_store import KeyValueStore

KEY_SEPARATOR = ":"

_LOGGER = logging.getLogger("lesson-planner.state")


def state_key(set_name: str, slot: str) -> str:
    return f"{set_name}{KEY_SEPARATOR}{slot}"


def save_app_state(
    store: KeyValueStore,
    set_name: str,
    slot: str,
    value: Any,
    *,
    logger: logging.Logger | None = None,
) -> bool:
    log = logger or _LOGGER
    key = state_key(set_name, slot)
    try:
        store.set(key, value)
    except Exception as error:
        log.error(
            "Failed to save app state",
            extra={"event": "state.save_failed", "key": key, "error": str(error)},
        )
        return False
    return True


def load_app_state(
    store: KeyValueStore,
    set_name: str,
    slot: str,
    *,
    logger: logging.Logger | None = None,
) -> Any:
    log = logger or _LOGGER
    key = state_key(set_name, slot)
    try:
        return store.get(key)
    except Exception as error:
        log.error(
            "Failed to load app state",
            extra={"event": "state.load_failed", "key": key, "error": str(error)},
        )
        return None


def clear_app_state(
    store: KeyValueStore,
    set_name: str,
    slot: str,
    *,
    logger: logging.Logger | None = None,
) -> bool:
    log = logger or _LOGGER
    key = state_key(set_name, slot)
    try:
        store.delete(key)
    except Exception as error:
        log.error(
            "Failed to clear app state",
            extra={"event": "state.clear_failed", "key": key, "error": str(error)},
        )
        return False
    return True


def list_known_set_names(store: KeyValueStore, *, logger: logging.Logger | None = None) -> list[str]:
    log = logger or _LOGGER
    try:
        keys = store.keys()
    except Exception as error:
        log.error(
            "Failed to list saved document sets",
            extra={"event": "state.list_failed", "error": str(error)},
        )
        return []

    names: list[str] = []
    for key in keys:
        name, separator, _ = key.rpartition(KEY_SEPARATOR)
        if separator and name and name not in names:
            names.append(name)
    return sorted(names)
