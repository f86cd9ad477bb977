"""
Cookie jar shared by the edge gate, the session synchronizer and the guard.

A CookieJar is built from the inbound request cookies. Whatever the identity
provider wants to write is staged on the jar and only leaves it through an
explicit flush, either onto the response or back into the request scope so
that downstream handlers in the same cycle see the refreshed values.

Supabase sessions live in `sb-<project-ref>-auth-token`, optionally split
into `.0`, `.1`, ... chunks and optionally stored as `base64-<b64url json>`.
"""

import base64
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("viso")

SESSION_COOKIE_PREFIX = "sb-"
BASE64_PREFIX = "base64-"
MAX_CHUNK_SIZE = 3180

# Keyword arguments accepted by starlette's Response.set_cookie
_COOKIE_OPTION_KEYS = {"max_age", "expires", "path", "domain", "secure", "httponly", "samesite"}


@dataclass
class StagedCookie:
    """A cookie write waiting to be flushed."""
    name: str
    value: str
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def is_deletion(self) -> bool:
        return self.options.get("max_age") == 0


class CookieJar:
    """
    Request-scoped cookie jar.

    read() always reflects staged writes, so a provider that refreshes a
    session and reads it back in the same cycle sees the new value.
    """

    def __init__(self, cookies: Mapping[str, str], cookie_domain: str | None = None):
        self._request_cookies = dict(cookies)
        self._cookies = dict(cookies)
        self._staged: dict[str, StagedCookie] = {}
        self.cookie_domain = cookie_domain

    @classmethod
    def from_request(cls, request: Request, cookie_domain: str | None = None) -> "CookieJar":
        return cls(request.cookies, cookie_domain=cookie_domain)

    # =========================================================================
    # READ
    # =========================================================================

    def read(self) -> list[tuple[str, str]]:
        """All current (name, value) pairs, staged writes applied."""
        return list(self._cookies.items())

    def get(self, name: str) -> str | None:
        return self._cookies.get(name)

    @property
    def request_cookie_names(self) -> list[str]:
        """Cookie names exactly as they arrived on the request."""
        return list(self._request_cookies)

    def session_cookie_names(self) -> list[str]:
        return [n for n in self._request_cookies if n.startswith(SESSION_COOKIE_PREFIX)]

    def has_session_cookies(self) -> bool:
        return bool(self.session_cookie_names())

    # =========================================================================
    # WRITE
    # =========================================================================

    @property
    def staged(self) -> list[StagedCookie]:
        return list(self._staged.values())

    def stage(self, name: str, value: str, options: dict[str, Any] | None = None) -> None:
        options = {k: v for k, v in (options or {}).items() if k in _COOKIE_OPTION_KEYS}
        cookie = StagedCookie(name=name, value=value, options=options)
        # Last write per name wins, as it would in the browser
        self._staged[name] = cookie

        if cookie.is_deletion:
            self._cookies.pop(name, None)
        else:
            self._cookies[name] = value

    def stage_deletion(self, name: str) -> None:
        self.stage(name, "", {"path": "/", "max_age": 0})

    def stage_session_clear(self) -> None:
        """Expire every session cookie that came in with the request."""
        for name in self.session_cookie_names():
            self.stage_deletion(name)

    def _with_cookie_domain(self, options: dict[str, Any]) -> dict[str, Any]:
        if not self.cookie_domain:
            return options
        return {**options, "domain": self.cookie_domain}

    def flush_to_response(self, response: Response) -> int:
        """Write staged cookies onto the response. Returns the count written."""
        for cookie in self._staged.values():
            response.set_cookie(
                key=cookie.name,
                value=cookie.value,
                **self._with_cookie_domain(cookie.options),
            )
        return len(self._staged)

    def flush_to_request(self, scope: dict[str, Any]) -> None:
        """Rewrite the Cookie header of an ASGI scope with the current values."""
        if not self._staged:
            return

        headers = [(k, v) for k, v in scope.get("headers", []) if k != b"cookie"]
        cookie_header = "; ".join(f"{name}={value}" for name, value in self._cookies.items())
        if cookie_header:
            headers.append((b"cookie", cookie_header.encode("latin-1")))
        scope["headers"] = headers

    def clear_session_cookies(self, response: Response) -> list[str]:
        """
        Expire every session cookie of the original request on `response`.

        Used on redirects, where nothing else staged on the jar should leak out.
        """
        names = self.session_cookie_names()
        for name in names:
            response.set_cookie(
                key=name,
                value="",
                **self._with_cookie_domain({"path": "/", "max_age": 0}),
            )
        if names:
            logger.debug(f"[COOKIES] Cleared session cookies: {', '.join(names)}")
        return names


# =============================================================================
# SESSION COOKIE CODEC
# =============================================================================

def session_storage_key(supabase_url: str) -> str:
    """`sb-<project-ref>-auth-token`, the project ref being the first host label."""
    host = urlparse(supabase_url).hostname or ""
    project_ref = host.split(".")[0]
    return f"{SESSION_COOKIE_PREFIX}{project_ref}-auth-token"


def _chunk_names(jar: CookieJar, storage_key: str) -> list[str]:
    names = []
    index = 0
    while jar.get(f"{storage_key}.{index}") is not None:
        names.append(f"{storage_key}.{index}")
        index += 1
    return names


def _decode_value(raw: str) -> dict[str, Any] | None:
    if raw.startswith(BASE64_PREFIX):
        encoded = raw[len(BASE64_PREFIX):]
        encoded += "=" * (-len(encoded) % 4)
        try:
            raw = base64.urlsafe_b64decode(encoded).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            return None

    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def read_session_cookie(jar: CookieJar, storage_key: str) -> dict[str, Any] | None:
    """Decode the stored session, joining chunks when present."""
    raw = jar.get(storage_key)
    if raw is None:
        chunks = _chunk_names(jar, storage_key)
        if not chunks:
            return None
        raw = "".join(jar.get(name) or "" for name in chunks)

    session = _decode_value(raw)
    if session is None:
        logger.debug(f"[COOKIES] Could not decode session cookie {storage_key}")
    return session


def write_session_cookie(
    jar: CookieJar,
    storage_key: str,
    session: dict[str, Any] | None,
    options: dict[str, Any] | None = None,
) -> None:
    """
    Stage the session under `storage_key`, chunking when it is too large.

    Stale chunks (or a stale unchunked cookie) from the previous value are
    expired so the browser never joins old and new pieces. A None session
    clears everything.
    """
    existing = [storage_key] if jar.get(storage_key) is not None else []
    existing += _chunk_names(jar, storage_key)

    if session is None:
        for name in existing:
            jar.stage_deletion(name)
        return

    payload = json.dumps(session, separators=(",", ":")).encode("utf-8")
    value = BASE64_PREFIX + base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=")

    cookie_options = {"path": "/", "samesite": "lax", "httponly": False, "max_age": 400 * 24 * 60 * 60}
    cookie_options.update(options or {})

    if len(value) <= MAX_CHUNK_SIZE:
        written = [storage_key]
        jar.stage(storage_key, value, cookie_options)
    else:
        written = []
        for index, start in enumerate(range(0, len(value), MAX_CHUNK_SIZE)):
            name = f"{storage_key}.{index}"
            jar.stage(name, value[start:start + MAX_CHUNK_SIZE], cookie_options)
            written.append(name)

    for name in existing:
        if name not in written:
            jar.stage_deletion(name)
