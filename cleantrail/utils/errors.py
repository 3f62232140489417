"""
Error handling utilities for collaborator calls.

Nothing in the engine is allowed to fail the host process: a
collaborator that raises is logged and treated as a no-op for
that call.  ``guarded`` centralises that policy so every call
site logs the same way.
"""

from __future__ import annotations

from collections.abc import Awaitable
from typing import TypeVar

from cleantrail.utils import logger

T = TypeVar("T")


class MalformedInputError(ValueError):
    """An event carried an unparseable URL or no usable hostname."""


def get_error_message(error: BaseException | object) -> str:
    """
    Safely extract an error message from an unknown error type.

    Falls back to the exception class name when the message is empty.
    """
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return "Unknown error"


async def guarded(
    awaitable: Awaitable[T],
    *,
    log: logger.Logger,
    action: str,
    fallback: T,
    data: dict[str, object] | None = None,
) -> T:
    """Await a collaborator call, logging and absorbing any failure.

    Args:
        awaitable: The pending collaborator call.
        log: Logger of the calling component.
        action: Short description used in the warning line.
        fallback: Value returned when the call raises.
        data: Extra structured fields for the warning line.

    Returns:
        The call's result, or *fallback* on failure.
    """
    try:
        return await awaitable
    except Exception as exc:
        log.warn(f"{action} failed", {**(data or {}), "error": get_error_message(exc)})
        return fallback
