"""FastAPI endpoints for the webhook bridge.

POST /v1/chat/completions - forward a chat request to the model's webhook
GET /v1/models - list configured models
GET /health - liveness and model count
"""

import asyncio
import time
from typing import AsyncIterator, Awaitable, Callable

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from webhook_bridge.api.openai_response import (
    SSE_DONE,
    create_completion_response,
    create_error_response,
    create_models_response,
    create_streaming_chunk,
    sse_event,
)
from webhook_bridge.api.schemas import ChatCompletionRequest
from webhook_bridge.core.errors import WebhookError
from webhook_bridge.core.request_context import extract_session_id, extract_user_context

logger = structlog.get_logger(__name__)

router = APIRouter()


class BearerAuthError(Exception):
    pass


def require_bearer(req: Request) -> None:
    """Reject requests without the configured inbound bearer token."""
    token = req.app.state.config.bearer_token
    if not token:
        return
    if req.headers.get("authorization", "") != f"Bearer {token}":
        raise BearerAuthError()


def _error(status: int, message: str, error_type: str) -> JSONResponse:
    return JSONResponse(status_code=status, content=create_error_response(message, error_type))


DISCONNECT_POLL_SECONDS = 0.5
CLIENT_DISCONNECTED = object()


async def first_fragment(
    stream: AsyncIterator[str],
    is_disconnected: Callable[[], Awaitable[bool]],
    poll_interval: float = DISCONNECT_POLL_SECONDS,
):
    """Wait for the first fragment of a stream while watching the client.

    Starlette only notices a disconnect once the response has started, so
    until then the client is polled. On disconnect the stream is closed,
    which aborts the outbound webhook call.

    Returns:
        The first fragment, None if the stream ended empty, or
        CLIENT_DISCONNECTED if the client went away first.

    Raises:
        WebhookError: The call failed before producing anything.
    """

    async def pull():
        try:
            return await anext(stream)
        except StopAsyncIteration:
            return None

    task = asyncio.create_task(pull())
    try:
        while True:
            done, _ = await asyncio.wait([task], timeout=poll_interval)
            if done:
                return task.result()
            if await is_disconnected():
                task.cancel()
                await asyncio.wait([task])
                await stream.aclose()
                return CLIENT_DISCONNECTED
    finally:
        if not task.done():
            task.cancel()


@router.post("/v1/chat/completions", dependencies=[Depends(require_bearer)])
async def chat_completions(request: ChatCompletionRequest, req: Request):
    """Translate an OpenAI chat request into a webhook call."""
    start = time.monotonic()
    config = req.app.state.config
    client = req.app.state.webhook_client
    model = request.model

    webhook_url = req.app.state.model_repository.get_model_webhook_url(model)
    if not webhook_url:
        return _error(404, f"Model '{model}' not found", "invalid_request_error")

    body = request.model_dump()
    messages = [m.model_dump(exclude_none=True) for m in request.messages]
    session_id, session_source = extract_session_id(body, req.headers, config.session_id_headers)
    user_context = extract_user_context(body, req.headers, config)

    if config.log_requests:
        logger.info("chat.request", model=model, stream=request.stream, session_id=session_id,
                    session_source=session_source, user_id=user_context.user_id,
                    user_email=user_context.user_email or "not provided",
                    user_name=user_context.user_name or "not provided",
                    user_role=user_context.user_role or "not provided")

    if not request.stream:
        try:
            content = await client.complete(webhook_url, messages, session_id, user_context)
        except WebhookError as e:
            logger.error("chat.webhook_failed", model=model, kind=e.kind, error=e.message)
            return _error(e.http_status, e.message, e.error_type)

        latency_ms = int((time.monotonic() - start) * 1000)
        logger.info("chat.response", model=model, session_id=session_id, latency_ms=latency_ms)
        return create_completion_response(model, content)

    stream = client.stream_completion(webhook_url, messages, session_id, user_context)

    # Pull the first fragment before committing to a 200, so connection and
    # HTTP failures still get a real status code.
    try:
        first = await first_fragment(stream, req.is_disconnected)
    except WebhookError as e:
        await stream.aclose()
        logger.error("chat_stream.webhook_failed", model=model, kind=e.kind, error=e.message)
        return _error(e.http_status, e.message, e.error_type)

    if first is CLIENT_DISCONNECTED:
        logger.info("chat_stream.client_disconnected", model=model, session_id=session_id)
        return Response(status_code=499)

    async def generate_events():
        try:
            if first is not None:
                yield sse_event(create_streaming_chunk(model, first))
                async for content in stream:
                    yield sse_event(create_streaming_chunk(model, content))
            yield sse_event(create_streaming_chunk(model, None, "stop"))
            yield SSE_DONE
            latency_ms = int((time.monotonic() - start) * 1000)
            logger.info("chat_stream.response", model=model, session_id=session_id,
                        latency_ms=latency_ms)
        except WebhookError as e:
            logger.error("chat_stream.webhook_failed", model=model, kind=e.kind, error=e.message)
            yield sse_event(create_error_response("Error during streaming", e.error_type))
        finally:
            await stream.aclose()

    return StreamingResponse(
        generate_events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.get("/v1/models", dependencies=[Depends(require_bearer)])
def list_models(req: Request):
    return create_models_response(req.app.state.model_repository.list_models())


@router.get("/health")
def health(req: Request):
    """Liveness check with the number of configured models."""
    return {"status": "ok", "models": len(req.app.state.model_repository.list_models())}


@router.get("/")
@router.head("/")
def root_health():
    """Basic root health check for deployment platforms."""
    return {"status": "ok", "service": "webhook-bridge"}
