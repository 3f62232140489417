"""Shared serialization helpers for camelCase conversion.

Persisted records and broadcast events use camelCase keys
(``firstBlocked``, ``rawScore``) while the Python models use
snake_case fields.  ``snake_to_camel`` is the alias generator
for every model; the ``*_record(s)`` helpers convert between
stored dicts and models.
"""

from __future__ import annotations

from typing import Any, TypeVar

import pydantic

from cleantrail.utils import logger

log = logger.create_logger("Serialization")

M = TypeVar("M", bound=pydantic.BaseModel)


def snake_to_camel(name: str) -> str:
    """Convert a snake_case string to camelCase.

    Args:
        name: A snake_case identifier such as
            ``"total_time_saved_ms"``.

    Returns:
        The camelCase equivalent, e.g. ``"totalTimeSavedMs"``.
    """
    parts = name.split("_")
    return parts[0] + "".join(w.capitalize() for w in parts[1:])


def dump_record(model: pydantic.BaseModel) -> dict[str, Any]:
    """Serialize a model to the camelCase, JSON-safe dict the store holds."""
    return model.model_dump(mode="json", by_alias=True)


def load_records(raw: object, model: type[M]) -> dict[str, M]:
    """Parse a stored ``{key: record}`` mapping into models.

    Entries that fail validation are dropped with a warning rather
    than failing the whole read; a corrupt row must not hide the
    rest of the statistics.
    """
    if not isinstance(raw, dict):
        return {}
    records: dict[str, M] = {}
    for key, value in raw.items():
        try:
            records[str(key)] = model.model_validate(value)
        except pydantic.ValidationError as exc:
            log.warn("Dropping malformed stored record", {"key": key, "model": model.__name__, "errors": exc.error_count()})
    return records


def dump_records(records: dict[str, pydantic.BaseModel]) -> dict[str, dict[str, Any]]:
    """Serialize a ``{key: model}`` mapping for the store."""
    return {key: dump_record(record) for key, record in records.items()}
