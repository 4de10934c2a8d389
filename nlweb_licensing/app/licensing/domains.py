"""Domain binding checks for licenses restricted to specific sites."""
from __future__ import annotations

from typing import Iterable
from urllib.parse import urlparse


def domain_from_url(site_url: str) -> str:
    parsed = urlparse(site_url if "://" in site_url else f"//{site_url}")
    return (parsed.hostname or "").lower()


def domains_match(current_domain: str, allowed_domain: str) -> bool:
    """Exact match, or ``*.example.com`` matching the apex and any subdomain."""

    current = current_domain.lower().strip()
    allowed = allowed_domain.lower().strip()
    if "://" in allowed:
        allowed = domain_from_url(allowed)
    if current == allowed:
        return True
    if allowed.startswith("*."):
        base = allowed[2:]
        return current == base or current.endswith(f".{base}")
    return False


def verify_domain_binding(current_domain: str, allowed_domains: Iterable[str]) -> bool:
    allowed = [domain for domain in allowed_domains if domain]
    # An empty site list leaves the license unbound.
    if not allowed:
        return True
    return any(domains_match(current_domain, domain) for domain in allowed)


__all__ = ["domain_from_url", "domains_match", "verify_domain_binding"]
