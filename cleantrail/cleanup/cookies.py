"""Cookie categorization and deletion selection.

Pure functions only; the orchestrator does the I/O.

Categories come from an ordered list of ``(pattern, category)``
pairs.  A cookie takes the category of the first pattern that is a
case-insensitive substring of its name, or ``uncategorized``.
Cookies in the ``necessary`` category are never selected for
deletion, whatever the profile says.

Whitelist entries are either ``hostname|name``, which protects that
one cookie, or a bare ``hostname``, which skips cookie cleanup for
the whole site.  A ``hostname|name`` entry never skips the rest of
the site's cookies.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from cleantrail.models import cleanup
from cleantrail.utils import url as url_mod

NECESSARY = "necessary"
UNCATEGORIZED = "uncategorized"


def categorize_cookie(name: str, rules: Sequence[tuple[str, str]]) -> str:
    """Return the category of the first matching pattern."""
    lowered = (name or "").lower()
    for pattern, category in rules:
        if pattern.lower() in lowered:
            return category
    return UNCATEGORIZED


def whitelist_key(hostname: str, cookie_name: str) -> str:
    return f"{hostname}|{cookie_name}"


def is_site_whitelisted(hostname: str, whitelist: Iterable[str]) -> bool:
    """True when the whole hostname is on the cookie whitelist."""
    return any(str(entry) == hostname for entry in whitelist)


def is_cookie_whitelisted(hostname: str, cookie_name: str, whitelist: Iterable[str]) -> bool:
    """True for an exact ``hostname|name`` entry or a bare hostname entry."""
    key = whitelist_key(hostname, cookie_name)
    return any(str(entry) in (key, hostname) for entry in whitelist)


def cookies_for_host(all_cookies: Iterable[cleanup.BrowserCookie], hostname: str) -> list[cleanup.BrowserCookie]:
    """Cookies whose domain, minus any leading dot, is exactly *hostname*."""
    return [c for c in all_cookies if url_mod.strip_leading_dot(c.domain) == hostname]


def select_for_deletion(
    site_cookies: Iterable[cleanup.BrowserCookie],
    whitelist: Sequence[str],
    rules: Sequence[tuple[str, str]],
) -> list[cleanup.BrowserCookie]:
    """Cookies an automated cleanup may delete.

    Excludes whitelisted cookies and every ``necessary`` cookie.
    """
    selected = []
    for cookie in site_cookies:
        host = url_mod.strip_leading_dot(cookie.domain)
        if is_cookie_whitelisted(host, cookie.name, whitelist):
            continue
        if categorize_cookie(cookie.name, rules) == NECESSARY:
            continue
        selected.append(cookie)
    return selected
