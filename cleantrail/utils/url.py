"""
URL and domain utility functions for tracker grouping and cleanup scoping.
"""

from __future__ import annotations

from urllib import parse

from cleantrail.utils import errors


def extract_hostname(url: str) -> str:
    """Extract the hostname from a URL string.

    Raises:
        MalformedInputError: If the URL cannot be parsed or has no hostname.
    """
    try:
        hostname = parse.urlparse(url).hostname
    except ValueError as exc:
        raise errors.MalformedInputError(f"Unparseable URL: {url!r}") from exc
    if not hostname:
        raise errors.MalformedInputError(f"URL has no hostname: {url!r}")
    return hostname


def is_http_url(url: str | None) -> bool:
    """Return True for ``http:`` and ``https:`` URLs only."""
    if not url:
        return False
    return url.startswith(("http:", "https:"))


def registrable_domain(hostname: str) -> str:
    """Return the last two dot-separated labels of *hostname*.

    This is a deliberate approximation with no public-suffix
    awareness: ``a.example.co.uk`` groups under ``co.uk``.
    Tracker statistics are keyed by this value, so changing it
    would regroup existing records.
    """
    return ".".join(hostname.lower().split(".")[-2:])


def strip_leading_dot(domain: str) -> str:
    """Drop the leading ``.`` that host-wide cookie domains carry."""
    return domain[1:] if domain.startswith(".") else domain


def cookie_url(domain: str, path: str, *, secure: bool) -> str:
    """Build the URL a cookie store needs to address a single cookie."""
    scheme = "https" if secure else "http"
    return f"{scheme}://{strip_leading_dot(domain)}{path or '/'}"


def site_origins(hostname: str) -> list[str]:
    """Both origins a hostname may have stored cache under."""
    return [f"https://{hostname}", f"http://{hostname}"]
