"""OpenAI-format response bodies and SSE framing."""

import json
import time
import uuid


def _completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4()}"


def create_streaming_chunk(model: str, content: str | None, finish_reason: str | None = None) -> dict:
    return {
        "id": _completion_id(),
        "object": "chat.completion.chunk",
        "created": int(time.time()),
        "model": model,
        "choices": [{
            "index": 0,
            "delta": {"content": content} if content else {},
            "finish_reason": finish_reason,
        }],
    }


def create_completion_response(model: str, content: str) -> dict:
    return {
        "id": _completion_id(),
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [{
            "index": 0,
            "message": {"role": "assistant", "content": content},
            "finish_reason": "stop",
        }],
        "usage": {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
    }


def create_error_response(message: str, error_type: str = "server_error") -> dict:
    return {"error": {"message": message, "type": error_type}}


def create_models_response(model_ids: list[str]) -> dict:
    created = int(time.time())
    return {
        "object": "list",
        "data": [
            {"id": model_id, "object": "model", "created": created, "owned_by": "n8n"}
            for model_id in model_ids
        ],
    }


def sse_event(data: dict) -> str:
    return f"data: {json.dumps(data)}\n\n"


SSE_DONE = "data: [DONE]\n\n"
