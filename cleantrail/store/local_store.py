"""Local key-value state store.

The engine's only shared mutable resource.  ``MemoryStateStore``
keeps values in a dict; ``JsonFileStateStore`` additionally mirrors
them to a JSON file so statistics survive restarts.

Values are deep-copied on the way in and out: callers follow a
read-modify-write discipline and must never mutate stored state
through a reference they got from ``get``.  Change listeners are
called after every write with the keys whose value actually
changed and the store area (always ``"local"``).  There is no
transaction support; two overlapping read-modify-write pairs on
the same key can lose an update.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import json
import pathlib
from collections.abc import Iterable, Mapping
from typing import Any

from cleantrail.host import protocols
from cleantrail.store import keys as store_keys
from cleantrail.utils import errors, logger

log = logger.create_logger("StateStore")

_MISSING = object()


class MemoryStateStore:
    """In-process store implementing ``protocols.StateStore``."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self._listeners: list[protocols.ChangeListener] = []

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        """Return stored values for *keys*; absent keys are omitted."""
        return {k: copy.deepcopy(self._data[k]) for k in keys if k in self._data}

    async def set(self, items: Mapping[str, Any]) -> None:
        changed = set()
        for key, value in items.items():
            if self._data.get(key, _MISSING) != value:
                changed.add(key)
            self._data[key] = copy.deepcopy(value)
        if changed:
            await self._persist()
            await self._notify(frozenset(changed))

    async def remove(self, keys: Iterable[str]) -> None:
        changed = {k for k in keys if k in self._data}
        for key in changed:
            del self._data[key]
        if changed:
            await self._persist()
            await self._notify(frozenset(changed))

    def on_change(self, listener: protocols.ChangeListener) -> None:
        self._listeners.append(listener)

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of the whole store, for diagnostics and tests."""
        return copy.deepcopy(self._data)

    async def _persist(self) -> None:
        """Hook for durable subclasses."""

    async def _notify(self, changed: frozenset[str]) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(changed, store_keys.LOCAL_AREA)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                log.warn("Change listener failed", {"keys": sorted(changed), "error": errors.get_error_message(exc)})


class JsonFileStateStore(MemoryStateStore):
    """Store mirrored to a JSON file after every write.

    A missing file starts an empty store; an unreadable one is
    logged and replaced on the next write.
    """

    def __init__(self, path: pathlib.Path) -> None:
        super().__init__(self._load(path))
        self._path = path
        self._write_lock = asyncio.Lock()

    @staticmethod
    def _load(path: pathlib.Path) -> dict[str, Any]:
        if not path.exists():
            log.debug("No store file yet", {"path": str(path)})
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            log.warn("Failed to read store file, starting empty", {"path": str(path), "error": str(exc)})
            return {}
        if not isinstance(data, dict):
            log.warn("Store file is not an object, starting empty", {"path": str(path)})
            return {}
        log.info("Store loaded", {"path": str(path), "keys": len(data)})
        return data

    async def _persist(self) -> None:
        async with self._write_lock:
            payload = json.dumps(self._data, indent=2, sort_keys=True)
            try:
                await asyncio.to_thread(self._write, payload)
            except OSError as exc:
                log.warn("Failed to write store file", {"path": str(self._path), "error": str(exc)})

    def _write(self, payload: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(payload, encoding="utf-8")
        tmp.replace(self._path)
