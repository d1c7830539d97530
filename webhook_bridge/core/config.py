"""Environment-driven configuration for the webhook bridge.

Every setting is read from the process environment when Config() is built,
so tests can monkeypatch env vars and construct a fresh instance.
"""

import os

import structlog

logger = structlog.get_logger(__name__)

FILE_UPLOAD_MODES = ("passthrough", "extract-json", "extract-multipart", "disabled")

DEFAULT_WEBHOOK_TIMEOUT_MS = 300_000
MIN_WEBHOOK_TIMEOUT_MS = 1_000
DEFAULT_MAX_BUFFER_SIZE = 10 * 1024 * 1024
DEFAULT_TURN_SEPARATOR = "\n\n"

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\"}


def parse_header_list(value: str | None, default: list[str]) -> list[str]:
    """Split a comma-separated header list, falling back to the default when empty."""
    if not value or not value.strip():
        return list(default)
    headers = [h.strip() for h in value.split(",") if h.strip()]
    return headers or list(default)


def unescape_separator(value: str) -> str:
    """Turn literal escape sequences (\\n, \\t, \\r, \\\\) into their characters."""
    out = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == "\\" and i + 1 < len(value) and value[i + 1] in _ESCAPES:
            out.append(_ESCAPES[value[i + 1]])
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _parse_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.environ.get(name, "")
    if not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning("config.invalid_int", name=name, value=raw)
        return default
    if value < minimum:
        logger.warning("config.below_minimum", name=name, value=value, minimum=minimum)
        return default
    return value


class Config:
    """Server, webhook and header settings."""

    def __init__(self):
        self.port = _parse_int("PORT", 3333)
        self.bearer_token = os.environ.get("BEARER_TOKEN", "")
        self.webhook_bearer_token = self._resolve_webhook_bearer_token()
        self.log_requests = os.environ.get("LOG_REQUESTS", "") == "true"

        self.webhook_timeout_ms = _parse_int(
            "N8N_TIMEOUT", DEFAULT_WEBHOOK_TIMEOUT_MS, minimum=MIN_WEBHOOK_TIMEOUT_MS
        )
        self.file_upload_mode = self._parse_file_upload_mode()
        self.enable_task_detection = os.environ.get("ENABLE_TASK_DETECTION", "") == "true"
        self.agent_turn_separator = self._parse_turn_separator()
        self.max_buffer_size = _parse_int("MAX_BUFFER_SIZE", DEFAULT_MAX_BUFFER_SIZE)
        self.stream_queue_size = _parse_int("STREAM_QUEUE_SIZE", 64)

        self.models_config = os.environ.get("MODELS_CONFIG", "models.json")

        self.session_id_headers = parse_header_list(
            os.environ.get("SESSION_ID_HEADERS"), ["X-Session-Id", "X-Chat-Id"]
        )
        self.user_id_headers = parse_header_list(os.environ.get("USER_ID_HEADERS"), ["X-User-Id"])
        self.user_email_headers = parse_header_list(
            os.environ.get("USER_EMAIL_HEADERS"), ["X-User-Email"]
        )
        self.user_name_headers = parse_header_list(
            os.environ.get("USER_NAME_HEADERS"), ["X-User-Name"]
        )
        self.user_role_headers = parse_header_list(
            os.environ.get("USER_ROLE_HEADERS"), ["X-User-Role"]
        )

    @property
    def webhook_timeout_seconds(self) -> float:
        return self.webhook_timeout_ms / 1000

    def _resolve_webhook_bearer_token(self) -> str:
        token = os.environ.get("N8N_WEBHOOK_BEARER_TOKEN")
        if token:
            return token

        legacy = os.environ.get("N8N_BEARER_TOKEN")
        if legacy:
            logger.warning("config.deprecated", name="N8N_BEARER_TOKEN",
                           replacement="N8N_WEBHOOK_BEARER_TOKEN")
            return legacy

        return ""

    def _parse_file_upload_mode(self) -> str:
        raw = os.environ.get("FILE_UPLOAD_MODE", "")
        mode = raw.strip().lower()
        if not mode:
            return "passthrough"
        if mode not in FILE_UPLOAD_MODES:
            logger.warning("config.invalid_file_upload_mode", value=raw, fallback="passthrough")
            return "passthrough"
        return mode

    def _parse_turn_separator(self) -> str:
        raw = os.environ.get("AGENT_TURN_SEPARATOR")
        if raw is None:
            return DEFAULT_TURN_SEPARATOR
        return unescape_separator(raw)
