"""Client identity helpers shared by rate limiting and request metrics.

Authentication itself happens upstream; when it succeeds it leaves the user
on `request.state.user` (an object or mapping with `id` and optionally
`role`).
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from starlette.requests import HTTPConnection


def _field(user: Any, name: str) -> Any:
    if isinstance(user, Mapping):
        return user.get(name)
    return getattr(user, name, None)


def get_user_identity(conn: HTTPConnection) -> tuple[Optional[Any], Optional[str]]:
    """Return (user_id, role) of the authenticated user, or (None, None)."""

    user = getattr(conn.state, "user", None)
    if user is None:
        return None, None
    return _field(user, "id"), _field(user, "role")


def get_client_ip(conn: HTTPConnection, *, trust_proxy_headers: bool = False) -> str:
    """
    Extract the client IP.

    X-Forwarded-For is honored only when the app runs behind a trusted
    proxy; the leftmost entry is the original client.
    """
    if trust_proxy_headers:
        forwarded_for = conn.headers.get("x-forwarded-for")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()
            if client_ip:
                return client_ip
    return conn.client.host if conn.client else "unknown"


def get_client_key(conn: HTTPConnection, *, trust_proxy_headers: bool = False) -> str:
    """Return rate-limit key preferring the authenticated user over the IP."""

    user_id, _ = get_user_identity(conn)
    if user_id is not None:
        return f"user:{user_id}"
    return f"ip:{get_client_ip(conn, trust_proxy_headers=trust_proxy_headers)}"


__all__ = ["get_client_ip", "get_client_key", "get_user_identity"]
