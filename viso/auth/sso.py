"""
Links to the platform shell login.

VISO has no login form of its own; /login forwards to the shell with an
absolute returnTo so the shell can send the user back after signing in.
"""

from collections.abc import Mapping
from urllib.parse import urlencode

from viso.config import DEFAULT_SHELL_LOGIN_URL

DEFAULT_HOST = "nexo.ventogroup.co"


def normalize_return_to(value: str | None) -> str:
    """Absolute URLs pass through, relative paths must start with '/', anything else is '/'."""
    v = (value or "").strip()
    if not v:
        return "/"
    if v.startswith(("http://", "https://")):
        return v
    if not v.startswith("/"):
        return "/"
    return v


def safe_relative_return_to(value: str | None) -> str:
    """Relative path or empty string; used where an absolute URL must not be echoed."""
    v = (value or "").strip()
    if not v.startswith("/") or v.startswith("//"):
        return ""
    return v


def build_shell_login_url(
    return_to: str | None,
    headers: Mapping[str, str],
    shell_login_url: str = DEFAULT_SHELL_LOGIN_URL,
) -> str:
    normalized = normalize_return_to(return_to)

    if not normalized.startswith(("http://", "https://")):
        host = headers.get("x-forwarded-host") or headers.get("host") or DEFAULT_HOST
        proto = headers.get("x-forwarded-proto") or "https"
        normalized = f"{proto}://{host}{normalized}"

    return f"{shell_login_url}?{urlencode({'returnTo': normalized})}"
