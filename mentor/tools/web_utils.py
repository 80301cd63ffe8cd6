from __future__ import annotations

from urllib.parse import urlparse

SOCIAL_MEDIA_DOMAINS = (
    "reddit.com",
    "facebook.com",
    "instagram.com",
    "tiktok.com",
    "twitter.com",
    "x.com",
)


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def extract_domain(url: str) -> str:
    """Extract domain from URL for display."""
    try:
        host = urlparse(url).netloc.lower()
    except ValueError:
        return url
    return host[4:] if host.startswith("www.") else host


def is_social_media(url: str) -> bool:
    domain = extract_domain(url)
    return any(domain == d or domain.endswith("." + d) for d in SOCIAL_MEDIA_DOMAINS)
