"""Session and user identity extraction from inbound requests.

Headers are checked in configured order (first non-empty wins), then body
fields, then defaults.
"""

import uuid
from dataclasses import dataclass
from typing import Callable, Mapping

ANONYMOUS_USER = "anonymous"


@dataclass
class UserContext:
    """Caller identity forwarded to the webhook."""
    user_id: str | None = ANONYMOUS_USER
    user_email: str | None = None
    user_name: str | None = None
    user_role: str | None = None


def extract_from_headers(headers: Mapping[str, str], header_names: list[str]) -> str | None:
    for name in header_names:
        value = headers.get(name.lower())
        if value:
            return value
    return None


def _first_body_value(body: dict, keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = body.get(key)
        if value:
            return str(value)
    return None


def extract_session_id(
    body: dict,
    headers: Mapping[str, str],
    session_id_headers: list[str],
    uuid_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> tuple[str, str]:
    """Find the conversation id for this request.

    Returns:
        Tuple of (session_id, source) where source names where it was found.
    """
    for key in ("session_id", "conversation_id", "chat_id"):
        if body.get(key):
            return str(body[key]), f"body.{key}"

    for name in session_id_headers:
        value = headers.get(name.lower())
        if value:
            return value, f"headers[{name}]"

    return uuid_factory(), "generated"


def extract_user_context(body: dict, headers: Mapping[str, str], config) -> UserContext:
    """Resolve user id/email/name/role from headers, then body, then defaults."""
    user_id = extract_from_headers(headers, config.user_id_headers) or _first_body_value(
        body, ("user", "user_id", "userId")
    )
    return UserContext(
        user_id=user_id or ANONYMOUS_USER,
        user_email=extract_from_headers(headers, config.user_email_headers)
        or _first_body_value(body, ("user_email", "userEmail")),
        user_name=extract_from_headers(headers, config.user_name_headers)
        or _first_body_value(body, ("user_name", "userName")),
        user_role=extract_from_headers(headers, config.user_role_headers)
        or _first_body_value(body, ("user_role", "userRole")),
    )
