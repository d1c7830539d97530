"""Builds the JSON body POSTed to the workflow webhook.

The payload shape is what n8n chat workflows read: the system prompt, the
current user message (twice, as currentMessage and chatInput), the remaining
history, the session id and the caller's identity. Optional identity fields
are only sent when they hold a non-empty string.
"""

from dataclasses import dataclass, field
from typing import Mapping

from webhook_bridge.core.file_processor import (
    ExtractedFile,
    decode_base64,
    extract_text,
    is_multimodal,
    parse_data_url,
    process_messages,
)
from webhook_bridge.core.request_context import ANONYMOUS_USER, UserContext
from webhook_bridge.core.task_detector import TaskDetectorService, TaskType

_OPTIONAL_USER_FIELDS = (
    ("userEmail", "user_email"),
    ("userName", "user_name"),
    ("userRole", "user_role"),
)


@dataclass
class BuiltPayload:
    """Outbound payload plus what the transport needs to send it.

    Attributes:
        payload: JSON-serializable body for the webhook.
        files: Files to attach as multipart parts (extract-multipart mode only).
        warnings: Non-fatal problems met while normalizing the input.
    """
    payload: dict
    files: list[ExtractedFile] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _user_value(user_context, attr: str, key: str):
    if user_context is None:
        return None
    if isinstance(user_context, UserContext):
        return getattr(user_context, attr)
    if isinstance(user_context, Mapping):
        return user_context.get(key, user_context.get(attr))
    return None


def _present(value) -> bool:
    return isinstance(value, str) and value != ""


def _sanitize(messages, warnings: list[str]) -> list[dict]:
    if not isinstance(messages, (list, tuple)):
        if messages is not None:
            warnings.append("messages is not a list; treated as empty")
        return []

    clean = []
    for index, message in enumerate(messages):
        if not isinstance(message, dict):
            warnings.append(f"messages[{index}] is not an object; skipped")
            continue
        clean.append(message)
    return clean


def _skipped_image_warnings(messages: list[dict]) -> list[str]:
    warnings = []
    for index, message in enumerate(messages):
        if not is_multimodal(message):
            continue
        for part in message["content"]:
            if not isinstance(part, dict) or part.get("type") != "image_url":
                continue
            image = part.get("image_url")
            url = image.get("url") if isinstance(image, dict) else image
            parsed = parse_data_url(url)
            if parsed is None:
                warnings.append(f"messages[{index}] references a remote image; not extracted")
            elif decode_base64(parsed[1]) is None:
                warnings.append(f"messages[{index}] has an image with invalid base64 data; skipped")
    return warnings


def build_payload(
    messages,
    session_id: str,
    user_context,
    file_upload_mode: str = "passthrough",
    task_detector: TaskDetectorService | None = None,
) -> BuiltPayload:
    """Turn an OpenAI message list into the webhook payload.

    Never raises: malformed input degrades to empty strings and lists, and
    the problems are reported in BuiltPayload.warnings.

    Args:
        messages: OpenAI chat messages (role + string or part-list content).
        session_id: Conversation identifier forwarded as sessionId.
        user_context: UserContext or a mapping with userId/userEmail/userName/userRole.
        file_upload_mode: passthrough, extract-json, extract-multipart or disabled.
        task_detector: Detector service; None disables task detection.

    Returns:
        BuiltPayload with the payload, multipart files and warnings.
    """
    warnings: list[str] = []
    original = _sanitize(messages, warnings)

    processed = process_messages(original, file_upload_mode)
    if file_upload_mode in ("extract-json", "extract-multipart"):
        warnings.extend(_skipped_image_warnings(original))

    system_message = next((m for m in processed.messages if m.get("role") == "system"), None)
    system_prompt = extract_text(system_message) if system_message else ""

    last_user = next(
        (m for m in reversed(processed.messages) if m.get("role") == "user"), None
    )
    current_message = extract_text(last_user) if last_user else ""

    user_id = _user_value(user_context, "user_id", "userId")

    payload = {
        "systemPrompt": system_prompt,
        "currentMessage": current_message,
        "chatInput": current_message,
        "messages": [m for m in processed.messages if m.get("role") != "system"],
        "sessionId": session_id if isinstance(session_id, str) else "",
        "userId": user_id if _present(user_id) else ANONYMOUS_USER,
        "isTask": False,
        "taskType": None,
    }

    for key, attr in _OPTIONAL_USER_FIELDS:
        value = _user_value(user_context, attr, key)
        if _present(value):
            payload[key] = value

    if task_detector is not None:
        detection = task_detector.detect_task(original)
        if detection.is_task:
            payload["isTask"] = True
            task_type = detection.task_type
            payload["taskType"] = task_type.value if isinstance(task_type, TaskType) else task_type

    if file_upload_mode == "extract-json" and processed.files:
        payload["files"] = [f.to_payload() for f in processed.files]

    multipart_files = processed.files if file_upload_mode == "extract-multipart" else []
    return BuiltPayload(payload=payload, files=multipart_files, warnings=warnings)
