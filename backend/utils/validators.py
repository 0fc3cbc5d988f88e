# backend/utils/validators.py
"""
Validation of the `url` query parameter.

Provides:
 - extract_hostname(url) -> str
 - validate_target(url) -> (bool, reason)
 - require_target(raw) -> url, raising MissingTargetParameter / InvalidTargetURL
"""

from urllib.parse import urlparse
from typing import Optional, Tuple

from proxy.errors import InvalidTargetURL, MissingTargetParameter

ALLOWED_SCHEMES = ("http", "https")


def extract_hostname(url: str) -> str:
    """Return hostname from URL or empty string on failure."""
    try:
        parsed = urlparse(url)
        return parsed.hostname or ""
    except ValueError:
        return ""


def validate_target(url: str) -> Tuple[bool, str]:
    """
    Check that `url` is something we can issue a GET for.
    Returns (True, "") if usable, otherwise (False, reason).
    """
    try:
        scheme = urlparse(url).scheme.lower()
    except ValueError:
        return False, "unparseable url"
    if scheme not in ALLOWED_SCHEMES:
        return False, f"unsupported scheme {scheme!r}" if scheme else "missing scheme"
    if not extract_hostname(url):
        return False, "invalid or missing hostname"
    return True, ""


def require_target(raw: Optional[str]) -> str:
    """Return the stripped target URL or raise the matching client error."""
    url = (raw or "").strip()
    if not url:
        raise MissingTargetParameter()
    ok, reason = validate_target(url)
    if not ok:
        raise InvalidTargetURL(url, reason)
    return url
