"""
Bundle loader for the approved tracker list and the cookie category map.

Both bundles are JSON files packaged alongside this module in
``bundles/`` (overridable with ``CLEANTRAIL_BUNDLE_DIR``).  Neither
is cached: re-enabling tracker blocking must reflect the bundle as
it is now, not as it was when the process started.
"""

from __future__ import annotations

import json
import pathlib
from typing import Any

from cleantrail.utils import logger

log = logger.create_logger("Bundles")

APPROVED_RULES_FILE = "approved-rules.json"
COOKIE_CATEGORIES_FILE = "cookie-categories.json"

# Used when the category bundle is missing or invalid.
DEFAULT_COOKIE_CATEGORIES: tuple[tuple[str, str], ...] = (
    ("session", "necessary"),
    ("sid", "necessary"),
    ("track", "analytics"),
)


class BundleLoadError(Exception):
    """A packaged bundle is missing or does not have the expected shape."""


# ============================================================================
# JSON File Loading
# ============================================================================


def _load_json(bundle_dir: pathlib.Path, filename: str) -> Any:
    """Load and parse a bundle file.

    Raises:
        BundleLoadError: If the file does not exist or is not valid JSON.
    """
    full_path = bundle_dir / filename
    if not full_path.exists():
        raise BundleLoadError(f"Bundle not found: {full_path}")
    try:
        with open(full_path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as exc:
        raise BundleLoadError(f"Invalid JSON in {filename}: {exc.msg}") from exc
    except OSError as exc:
        raise BundleLoadError(f"Unreadable bundle {filename}: {exc}") from exc


class BundleLoader:
    """Reads packaged bundles from a directory."""

    def __init__(self, bundle_dir: pathlib.Path) -> None:
        self._bundle_dir = bundle_dir

    def load_approved_domains(self) -> dict[str, dict[str, Any]]:
        """Return the approved tracker mapping ``{domain: metadata}``.

        Raises:
            BundleLoadError: If the bundle is missing or not an object.
        """
        raw = _load_json(self._bundle_dir, APPROVED_RULES_FILE)
        if not isinstance(raw, dict):
            raise BundleLoadError(f"{APPROVED_RULES_FILE} must be a JSON object")
        approved = {str(domain).lower(): (meta if isinstance(meta, dict) else {}) for domain, meta in raw.items() if domain}
        log.info("Approved tracker bundle loaded", {"domains": len(approved)})
        return approved

    def load_cookie_categories(self) -> list[tuple[str, str]]:
        """Return ordered ``(pattern, category)`` pairs.

        Falls back to ``DEFAULT_COOKIE_CATEGORIES`` on any failure;
        a missing category map must never stop cleanup.
        """
        try:
            raw = _load_json(self._bundle_dir, COOKIE_CATEGORIES_FILE)
        except BundleLoadError as exc:
            log.warn("Cookie category bundle unavailable, using defaults", {"error": str(exc)})
            return list(DEFAULT_COOKIE_CATEGORIES)

        if not isinstance(raw, dict) or not all(isinstance(v, str) for v in raw.values()):
            log.warn("Cookie category bundle malformed, using defaults", {"file": COOKIE_CATEGORIES_FILE})
            return list(DEFAULT_COOKIE_CATEGORIES)

        pairs = [(str(pattern), category) for pattern, category in raw.items() if pattern]
        log.info("Cookie category bundle loaded", {"patterns": len(pairs)})
        return pairs
