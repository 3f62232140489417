"""Cleanup profiles and adaptive profile selection.

Four built-in profiles plus ``custom_pro``, whose stored facets
(``customProConfig``) override the ``balanced`` profile.  The
active profile's *source* is persisted next to it: a ``manual``
choice is sticky and suppresses adaptive selection until the user
resets it.
"""

from __future__ import annotations

from typing import Any

import pydantic

from cleantrail.engine.context import EngineContext
from cleantrail.models import cleanup
from cleantrail.store import keys
from cleantrail.utils import errors, logger

log = logger.create_logger("Profiles")

CUSTOM_PROFILE = "custom_pro"
CUSTOM_PROFILE_BASE = "balanced"

BUILTIN_PROFILES: dict[str, cleanup.CleanupProfile] = {
    "strict": cleanup.CleanupProfile(
        delete_cookies=True,
        clear_cache=True,
        delete_local_storage=True,
        delete_session_storage=True,
        delete_indexed_db=True,
    ),
    "balanced": cleanup.CleanupProfile(delete_cookies=True, clear_cache=True),
    "relaxed": cleanup.CleanupProfile(),
    "paranoid": cleanup.CleanupProfile(
        delete_cookies=True,
        clear_cache=True,
        delete_local_storage=True,
        delete_session_storage=True,
        delete_indexed_db=True,
    ),
}

KNOWN_PROFILES = frozenset(BUILTIN_PROFILES) | {CUSTOM_PROFILE}


def normalize_profile_name(name: object, default: str = "balanced") -> str:
    return name if isinstance(name, str) and name in KNOWN_PROFILES else default


def merge_custom_profile(overrides: object) -> cleanup.CleanupProfile:
    """Apply stored custom facets on top of the base profile.

    Unknown keys and non-boolean values are ignored.
    """
    base = BUILTIN_PROFILES[CUSTOM_PROFILE_BASE]
    if not isinstance(overrides, dict):
        return base
    merged: dict[str, Any] = base.model_dump(by_alias=True)
    merged.update({k: v for k, v in overrides.items() if k in merged and isinstance(v, bool)})
    try:
        return cleanup.CleanupProfile.model_validate(merged)
    except pydantic.ValidationError:
        log.warn("Invalid custom profile, using base", {"base": CUSTOM_PROFILE_BASE})
        return base


def resolve_profile(name: str, custom_config: object = None) -> cleanup.CleanupProfile:
    if name == CUSTOM_PROFILE:
        return merge_custom_profile(custom_config)
    return BUILTIN_PROFILES.get(name, BUILTIN_PROFILES[CUSTOM_PROFILE_BASE])


def choose_adaptive_profile(hostname: str, *, trusted: bool, anonymity_suffixes: tuple[str, ...]) -> cleanup.ProfileName:
    """Profile adaptive selection would pick for *hostname*."""
    if hostname.endswith(anonymity_suffixes):
        return "paranoid"
    if trusted:
        return "relaxed"
    return "strict"


async def set_active_profile(ctx: EngineContext, name: str, source: cleanup.ProfileSource = "manual") -> str:
    """Persist the active profile and its source, then announce it.

    Unknown names fall back to ``balanced``.

    Returns:
        The profile name actually stored.
    """
    profile = normalize_profile_name(name)
    await errors.guarded(
        ctx.store.set({keys.ACTIVE_PROFILE: profile, keys.PROFILE_SOURCE: source}),
        log=log,
        action="Persist active profile",
        fallback=None,
        data={"profile": profile},
    )
    await errors.guarded(
        ctx.collaborators.broadcaster.broadcast({"type": "profileUpdate", "profile": profile, "source": source}),
        log=log,
        action="Profile broadcast",
        fallback=None,
    )
    log.info("Active profile set", {"profile": profile, "source": source})
    return profile


async def reset_profile_source(ctx: EngineContext) -> None:
    """Drop a sticky manual choice so adaptive selection can run again."""
    await errors.guarded(ctx.store.remove([keys.PROFILE_SOURCE]), log=log, action="Reset profile source", fallback=None)
    log.info("Profile source reset; adaptive selection re-enabled")


async def adapt_profile_for_host(ctx: EngineContext, hostname: str, *, adaptive: bool, trusted: bool) -> str | None:
    """Run adaptive selection for *hostname*.

    Returns:
        The selected profile, or ``None`` when adaptation is disabled.
    """
    if not adaptive:
        return None
    selected = choose_adaptive_profile(hostname, trusted=trusted, anonymity_suffixes=ctx.settings.anonymity_suffixes)
    return await set_active_profile(ctx, selected, "auto")
