"""
bloxguard.engine.url_filter — URL Extraction & Allow-List Matching
===================================================================

Pure functions used by the website-filter cog and the ``/allowsite``
commands.  A host is allowed when it equals an allow-listed domain or is
a subdomain of one (``sub.roblox.com`` matches ``roblox.com``;
``robloxx.com`` does not).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from urllib.parse import urlsplit

from bloxguard.constants import FALLBACK_ALLOWED_DOMAINS, URL_PATTERN

logger = logging.getLogger(__name__)


def extract_urls(content: str) -> list[str]:
    """Return every URL in *content*, in order of appearance."""
    return [m.group(0) for m in URL_PATTERN.finditer(content or "")]


def extract_domain(url: str) -> str | None:
    """Lower-cased host of *url*, or ``None`` if it can't be parsed."""
    try:
        host = urlsplit(url).hostname
    except ValueError:
        logger.debug("Unparseable URL: %s", url)
        return None
    host = (host or "").rstrip(".")
    return host.lower() or None


def normalize_domain(value: str) -> str:
    """Turn user input like ``https://www.Example.com/path`` into ``example.com``."""
    domain = value.strip().lower()
    for scheme in ("https://", "http://"):
        if domain.startswith(scheme):
            domain = domain[len(scheme):]
    if domain.startswith("www."):
        domain = domain[4:]
    host = domain.split("/", 1)[0].split("?", 1)[0].split("#", 1)[0]
    return host.split(":", 1)[0].rstrip(".")


def effective_allow_list(allowed: Iterable[str] | None) -> list[str]:
    """The guild's list, or the built-in fallback when the list is empty."""
    domains = [d.lower() for d in (allowed or []) if d]
    return domains or list(FALLBACK_ALLOWED_DOMAINS)


def is_allowed_domain(domain: str, allowed: Iterable[str]) -> bool:
    domain = domain.lower()
    return any(domain == a or domain.endswith("." + a) for a in allowed)


def find_blocked_urls(content: str, allowed: Iterable[str] | None) -> list[str]:
    """URLs in *content* whose host is not on the (effective) allow-list."""
    allow_list = effective_allow_list(allowed)
    blocked: list[str] = []
    for url in extract_urls(content):
        domain = extract_domain(url)
        if domain is None or not is_allowed_domain(domain, allow_list):
            blocked.append(url)
    return blocked
