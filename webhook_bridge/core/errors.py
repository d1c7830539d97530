"""Failure taxonomy for outbound webhook calls.

Transport and upstream HTTP failures are mapped onto a handful of
WebhookError subclasses. None of them are retried here; the API layer turns
them into OpenAI-style error envelopes.
"""

import json
import socket
import ssl

import httpx


class WebhookError(Exception):
    """Base class for classified webhook failures."""

    kind = "transport_error"
    http_status = 502
    error_type = "server_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class WebhookConnectionRefusedError(WebhookError):
    kind = "connection_refused"


class WebhookDNSError(WebhookError):
    kind = "dns_failure"


class WebhookTLSError(WebhookError):
    kind = "tls_failure"


class WebhookTimeoutError(WebhookError):
    kind = "timeout"
    http_status = 504


class WebhookTransportError(WebhookError):
    kind = "transport_error"


class WebhookResponseTooLargeError(WebhookError):
    kind = "response_too_large"


_STATUS_HINTS = {
    401: "Webhook rejected the credentials. Check N8N_WEBHOOK_BEARER_TOKEN.",
    403: "Webhook refused access. Check the workflow's authentication settings.",
    404: "Webhook not found. Is the workflow active and the URL correct?",
}


class WebhookHTTPError(WebhookError):
    """Upstream answered with a 4xx/5xx status.

    Attributes:
        status: Numeric status returned by the webhook.
        upstream_message: Message reported by the webhook body, if any.
        hint: Operator hint for 401/403/404, empty otherwise.
    """

    kind = "upstream_http_error"

    def __init__(self, status: int, upstream_message: str = ""):
        self.status = status
        self.upstream_message = upstream_message
        self.hint = _STATUS_HINTS.get(status, "")

        message = f"Webhook returned HTTP {status}"
        if upstream_message:
            message += f": {upstream_message}"
        if self.hint:
            message += f" ({self.hint})"
        super().__init__(message)


_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "temporary failure in name resolution",
    "no address associated with hostname",
    "enotfound",
)
_TLS_MARKERS = (
    "certificate_verify_failed",
    "certificate verify failed",
    "unable to verify",
    "self signed certificate",
    "self-signed certificate",
    "hostname mismatch",
)
_REFUSED_MARKERS = ("connection refused", "econnrefused", "errno 111", "errno 61")


def upstream_message_from_body(body: bytes) -> str:
    """Pull a human-readable message out of an upstream error body."""
    if not body:
        return ""
    text = body.decode("utf-8", errors="replace").strip()
    try:
        data = json.loads(text)
    except ValueError:
        return text[:500]

    if isinstance(data, dict):
        for key in ("message", "error"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]
    return text[:500]


def _exception_chain(exc: BaseException):
    seen = set()
    current = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def classify_error(exc: BaseException) -> WebhookError:
    """Map a transport or HTTP failure onto the WebhookError taxonomy.

    Never raises. An already-classified error is returned unchanged.
    """
    if isinstance(exc, WebhookError):
        return exc

    chain = list(_exception_chain(exc))

    for err in chain:
        if isinstance(err, httpx.HTTPStatusError):
            body = b""
            try:
                body = err.response.content
            except httpx.ResponseNotRead:
                pass
            return WebhookHTTPError(err.response.status_code, upstream_message_from_body(body))

    for err in chain:
        if isinstance(err, (httpx.TimeoutException, TimeoutError)):
            return WebhookTimeoutError(f"Webhook call timed out: {exc}")

    for err in chain:
        if isinstance(err, ssl.SSLCertVerificationError):
            return WebhookTLSError(f"TLS verification failed: {err}")
        if isinstance(err, socket.gaierror):
            return WebhookDNSError(f"DNS resolution failed: {err}")
        if isinstance(err, ConnectionRefusedError):
            return WebhookConnectionRefusedError(f"Connection refused: {err}")

    # Message markers only apply to connection-stage errors. Read/write
    # failures and arbitrary exceptions stay generic transport errors.
    connect_errors = [err for err in chain if isinstance(err, (httpx.ConnectError, OSError))]
    text = " ".join(str(err).lower() for err in connect_errors)
    if any(marker in text for marker in _REFUSED_MARKERS):
        return WebhookConnectionRefusedError(f"Connection refused: {exc}")
    if any(marker in text for marker in _DNS_MARKERS):
        return WebhookDNSError(f"DNS resolution failed: {exc}")
    if any(isinstance(err, (httpx.ConnectError, ssl.SSLError)) for err in chain):
        if any(marker in text for marker in _TLS_MARKERS):
            return WebhookTLSError(f"TLS verification failed: {exc}")

    return WebhookTransportError(f"Webhook request failed: {exc}")
