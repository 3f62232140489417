"""
Persisted state keys.

Key names match what the popup and options pages read, so they
stay camelCase.
"""

from __future__ import annotations

BLOCKED_TRACKERS = "blockedTrackers"
PENDING_TRACKERS = "pendingTrackers"
SITE_STATS = "siteStats"

ACTIVE_PROFILE = "activeProfile"
PROFILE_SOURCE = "profileSource"
CUSTOM_PROFILE_CONFIG = "customProConfig"
ADAPTIVE_PROFILES = "adaptiveProfiles"

COOKIE_WHITELIST = "cookieWhitelist"
TRUSTED_SITES = "trustedSites"
COOKIE_CATEGORY_COUNTS = "cookieCategoryCounts"

DELETION_HISTORY = "deletionHistory"
DAILY_COOKIE_CLEARS = "dailyCookieClears"
DAILY_CACHE_CLEARS = "dailyCacheClears"
LAST_CLEANUP = "lastCleanup"

PENDING_COOKIES = "pendingCookies"
TOTAL_COOKIES_DELETED = "totalCookiesDeleted"
PENDING_CACHE = "pendingCache"
TOTAL_CACHE_CLEARED = "totalCacheCleared"

TAB_URLS = "tabUrls"
PAUSE_CLEANUP = "pauseCleanup"
AUTO_COOKIE_DELETION = "autoCookieDeletionEnabled"
TRACKER_BLOCKING_ENABLED = "trackerBlockingEnabled"
FINGERPRINT_ALERTS = "fingerprintingAlerts"

# Store area the engine reads and writes.
LOCAL_AREA = "local"

# A change to any of these keys, by any writer, schedules a score republish.
SCORE_INPUT_KEYS: frozenset[str] = frozenset({
    SITE_STATS,
    PENDING_COOKIES,
    TOTAL_COOKIES_DELETED,
    PENDING_CACHE,
    TOTAL_CACHE_CLEARED,
    PENDING_TRACKERS,
    BLOCKED_TRACKERS,
})
