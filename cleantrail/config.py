"""
Engine configuration.

Centralises every tunable the engine uses: timing (decay half-life,
score debounce), rule-id allocation, cleanup bookkeeping limits,
grading policy, and the HTTP surface.

Uses ``pydantic_settings.BaseSettings`` for automatic environment
variable binding (``CLEANTRAIL_*``), type coercion, and validation.
"""

from __future__ import annotations

import functools
import pathlib

import pydantic
import pydantic_settings

from cleantrail.utils import logger

log = logger.create_logger("Config")

_PACKAGE_DIR = pathlib.Path(__file__).resolve().parent

DAY_MS = 24 * 60 * 60 * 1000


class GradingPolicy(pydantic.BaseModel):
    """Weights and letter thresholds for the privacy grade.

    The score starts at ``base_score`` and each aggregate component
    subtracts ``component * weight``.  Letters are assigned with
    strict ``>`` comparisons walking ``thresholds`` in order; a score
    that beats none of them gets ``floor_letter``.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    base_score: float = 100.0
    cookie_weight: float = 0.05
    cache_weight: float = 0.01
    tracker_weight: float = 0.02
    fingerprint_weight: float = 0.5
    thresholds: tuple[tuple[float, str], ...] = (
        (90.0, "A+"),
        (80.0, "A"),
        (70.0, "B"),
        (60.0, "C"),
    )
    floor_letter: str = "D"
    badge_colours: dict[str, str] = pydantic.Field(
        default_factory=lambda: {
            "A+": "#2ecc71",
            "A": "#27ae60",
            "B": "#f1c40f",
            "C": "#e67e22",
            "D": "#e74c3c",
        }
    )
    fallback_colour: str = "#000000"


class EngineSettings(pydantic_settings.BaseSettings):
    """Runtime settings for the privacy engine.

    Attributes:
        half_life_ms: Decay half-life applied to site statistics.
        score_debounce_ms: Quiet window before a score republish.
        rule_id_base: First id of the block-rule range owned by the engine.
        rule_id_range: Size of that range; teardown removes all of it.
        time_saved_per_block_ms: Fixed estimate credited per blocked request.
        history_limit: Maximum deletion-history entries retained.
        fingerprint_alert_limit: Maximum fingerprint alerts retained.
        anonymity_suffixes: Hostname suffixes that force the paranoid profile.
        default_profile: Profile used when none is stored.
        bundle_dir: Directory holding the approved-rules and cookie-category bundles.
        store_path: JSON file backing the local store; in-memory when unset.
        headless: Launch the browser without a window.
        start_url: Page opened in the first tab after launch.
    """

    model_config = pydantic_settings.SettingsConfigDict(env_prefix="CLEANTRAIL_", extra="ignore")

    half_life_ms: float = pydantic.Field(default=float(DAY_MS), gt=0)
    score_debounce_ms: float = pydantic.Field(default=250.0, ge=0)
    rule_id_base: int = 100_000
    rule_id_range: int = pydantic.Field(default=10_000, gt=0)
    rule_priority: int = 1
    rule_resource_types: tuple[str, ...] = ("script", "xmlhttprequest", "sub_frame", "image", "stylesheet")
    time_saved_per_block_ms: int = 50
    history_limit: int = pydantic.Field(default=20, gt=0)
    fingerprint_alert_limit: int = pydantic.Field(default=200, gt=0)
    anonymity_suffixes: tuple[str, ...] = (".onion",)
    default_profile: str = "balanced"
    bundle_dir: pathlib.Path = _PACKAGE_DIR / "data" / "bundles"
    store_path: pathlib.Path | None = None
    grading: GradingPolicy = pydantic.Field(default_factory=GradingPolicy)

    headless: bool = True
    start_url: str | None = None

    host: str = "127.0.0.1"
    port: int = 3002
    environment: str = "development"

    @property
    def debounce_seconds(self) -> float:
        return self.score_debounce_ms / 1000

    def reserved_rule_ids(self) -> list[int]:
        """Every rule id the engine may have installed."""
        return list(range(self.rule_id_base, self.rule_id_base + self.rule_id_range))


@functools.lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """Load settings from the environment once per process."""
    settings = EngineSettings()
    log.debug(
        "Settings loaded",
        {
            "halfLifeMs": settings.half_life_ms,
            "debounceMs": settings.score_debounce_ms,
            "bundleDir": str(settings.bundle_dir),
            "storePath": str(settings.store_path) if settings.store_path else None,
        },
    )
    return settings
