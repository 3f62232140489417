"""Pydantic models for cleanup profiles, deletion history, and cookies."""

from __future__ import annotations

from typing import Literal

import pydantic

from cleantrail.utils.serialization import snake_to_camel

ProfileName = Literal["strict", "balanced", "relaxed", "paranoid", "custom_pro"]
ProfileSource = Literal["manual", "auto"]

MANUAL_CLEANUP_HOSTNAME = "Manual cleanup"


class CleanupProfile(pydantic.BaseModel):
    """Named, immutable set of cleanup facets applied at tab close."""

    model_config = pydantic.ConfigDict(alias_generator=snake_to_camel, populate_by_name=True, frozen=True)

    delete_cookies: bool = False
    clear_cache: bool = False
    delete_local_storage: bool = False
    delete_session_storage: bool = False
    delete_indexed_db: bool = pydantic.Field(default=False, alias="deleteIndexedDB")

    @property
    def wants_storage_cleanup(self) -> bool:
        return self.delete_local_storage or self.delete_session_storage or self.delete_indexed_db

    @property
    def is_noop(self) -> bool:
        return not (self.delete_cookies or self.clear_cache or self.wants_storage_cleanup)

    def storage_payload(self) -> StorageCleanupRequest:
        return StorageCleanupRequest(
            delete_local_storage=self.delete_local_storage,
            delete_session_storage=self.delete_session_storage,
            delete_indexed_db=self.delete_indexed_db,
        )


class StorageCleanupRequest(pydantic.BaseModel):
    """Arguments passed to the page-context storage cleanup script."""

    model_config = pydantic.ConfigDict(alias_generator=snake_to_camel, populate_by_name=True, frozen=True)

    delete_local_storage: bool = False
    delete_session_storage: bool = False
    delete_indexed_db: bool = pydantic.Field(default=False, alias="deleteIndexedDB")


class DeletionHistoryEntry(pydantic.BaseModel):
    """One cleanup event, newest first in the stored history."""

    model_config = pydantic.ConfigDict(alias_generator=snake_to_camel, populate_by_name=True)

    hostname: str
    time: str
    cookies_deleted: int | None = None
    cache_cleared: bool = False
    cache_estimate_mb: float | None = pydantic.Field(default=None, alias="cacheEstimateMB")


class BrowserCookie(pydantic.BaseModel):
    """A cookie as reported by the host cookie store."""

    name: str
    domain: str
    path: str = "/"
    secure: bool = False
    value: str = ""
