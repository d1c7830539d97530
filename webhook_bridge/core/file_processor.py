"""Multimodal message handling.

Four modes control what happens to image/file parts of chat messages:
- passthrough: forward content untouched
- extract-json: replace content with its text, collect files for the JSON payload
- extract-multipart: same extraction, files are sent as multipart attachments
- disabled: replace content with its text, drop the files
"""

import base64
import binascii
import re
from dataclasses import dataclass, field

_DATA_URL = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)
_WHITESPACE = re.compile(r"\s+")

_MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
    "application/pdf": "pdf",
    "text/plain": "txt",
    "application/json": "json",
}


@dataclass
class ExtractedFile:
    """A file pulled out of an embedded data URL."""
    name: str
    mime_type: str
    base64_data: str

    def to_payload(self) -> dict:
        return {"name": self.name, "mimeType": self.mime_type, "base64Data": self.base64_data}

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.base64_data)


@dataclass
class ProcessedMessages:
    messages: list[dict]
    files: list[ExtractedFile] = field(default_factory=list)


def is_multimodal(message: dict) -> bool:
    return isinstance(message.get("content"), list)


def parse_data_url(url) -> tuple[str, str] | None:
    """Split a base64 data URL into (mime_type, data). Remote URLs return None."""
    if not isinstance(url, str):
        return None
    match = _DATA_URL.match(url)
    if not match:
        return None
    return match.group(1), match.group(2)


def decode_base64(data: str) -> bytes | None:
    """Strictly decode base64 data, ignoring whitespace. Invalid data returns None."""
    try:
        return base64.b64decode(_WHITESPACE.sub("", data), validate=True)
    except (binascii.Error, ValueError):
        return None


def extension_for(mime_type: str) -> str:
    return _MIME_EXTENSIONS.get(mime_type, "bin")


def extract_text(message: dict) -> str:
    """Plain text of a message: text parts joined by newlines, or the string content.

    Text parts whose text is not a string are skipped.
    """
    content = message.get("content")
    if isinstance(content, list):
        return "\n".join(
            part["text"]
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
            and isinstance(part.get("text"), str)
        )
    if isinstance(content, str):
        return content
    return ""


def _image_url(part: dict):
    image = part.get("image_url")
    if isinstance(image, dict):
        return image.get("url")
    return image


def extract_files(message: dict, message_index: int) -> list[ExtractedFile]:
    """Collect embedded files, named message_<index>_file_<n>.<ext>.

    Remote URLs and data URLs with invalid base64 are skipped.
    """
    if not is_multimodal(message):
        return []

    files = []
    for part in message["content"]:
        if not isinstance(part, dict) or part.get("type") != "image_url":
            continue
        parsed = parse_data_url(_image_url(part))
        if parsed is None:
            continue
        mime_type, data = parsed
        if decode_base64(data) is None:
            continue
        files.append(ExtractedFile(
            name=f"message_{message_index}_file_{len(files)}.{extension_for(mime_type)}",
            mime_type=mime_type,
            base64_data=_WHITESPACE.sub("", data),
        ))
    return files


def process_messages(messages: list[dict], mode: str) -> ProcessedMessages:
    """Normalize multimodal messages according to the file upload mode."""
    if mode == "passthrough":
        return ProcessedMessages(messages=list(messages))

    processed = []
    files: list[ExtractedFile] = []
    for index, message in enumerate(messages):
        if not is_multimodal(message):
            processed.append(message)
            continue

        if mode in ("extract-json", "extract-multipart"):
            files.extend(extract_files(message, index))
        processed.append({**message, "content": extract_text(message)})

    return ProcessedMessages(messages=processed, files=files)
