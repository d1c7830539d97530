"""Completion executors: one outbound webhook call per chat request.

The webhook always answers with a stream, so both modes share one pipeline:
a producer task reads response bytes, runs them through a request-scoped
ChunkExtractor and pushes content onto a bounded queue. Streaming callers
drain the queue as an async iterator; non-streaming callers join it.

Closing or cancelling the iterator cancels the producer, which closes the
httpx response and its socket. Nothing left in the queue is delivered.
"""

import asyncio
import json
from typing import AsyncIterator

import httpx
import structlog

from webhook_bridge.core.chunk_extractor import ChunkExtractor, is_turn_end, parse_fragment
from webhook_bridge.core.config import Config
from webhook_bridge.core.errors import (
    WebhookError,
    WebhookHTTPError,
    WebhookTimeoutError,
    classify_error,
    upstream_message_from_body,
)
from webhook_bridge.core.payload_builder import BuiltPayload, build_payload
from webhook_bridge.core.task_detector import TaskDetectorService

logger = structlog.get_logger(__name__)

_DONE = object()


class _Failure:
    def __init__(self, error: WebhookError):
        self.error = error


class ContentAssembler:
    """Turns raw fragments into content, inserting separators between agent turns."""

    def __init__(self, turn_separator: str = "\n\n"):
        self.turn_separator = turn_separator
        self._has_content = False
        self._pending_separator = False

    def push(self, fragment: str) -> list[str]:
        if is_turn_end(fragment):
            if self._has_content:
                self._pending_separator = True
            return []

        content = parse_fragment(fragment)
        if not content:
            return []

        out = []
        if self._pending_separator and self.turn_separator:
            out.append(self.turn_separator)
        self._pending_separator = False
        self._has_content = True
        out.append(content)
        return out


def _form_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


class WebhookClient:
    """Sends chat requests to workflow webhooks and frames their responses."""

    def __init__(
        self,
        config: Config,
        task_detector: TaskDetectorService | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self.task_detector = task_detector
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.webhook_timeout_seconds)
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.webhook_bearer_token:
            headers["Authorization"] = f"Bearer {self.config.webhook_bearer_token}"
        return headers

    def build_payload(self, messages, session_id: str, user_context) -> BuiltPayload:
        detector = self.task_detector if self.config.enable_task_detection else None
        built = build_payload(
            messages,
            session_id,
            user_context,
            file_upload_mode=self.config.file_upload_mode,
            task_detector=detector,
        )
        for warning in built.warnings:
            logger.warning("webhook.payload_warning", session_id=session_id, warning=warning)
        return built

    def _request_kwargs(self, built: BuiltPayload) -> dict:
        if not built.files:
            return {"headers": self.get_headers(), "json": built.payload}

        # httpx sets the multipart Content-Type with its boundary.
        headers = {k: v for k, v in self.get_headers().items() if k != "Content-Type"}
        data = {k: _form_value(v) for k, v in built.payload.items() if v is not None}
        files = [("files", (f.name, f.to_bytes(), f.mime_type)) for f in built.files]
        return {"headers": headers, "data": data, "files": files}

    async def _pump(self, url: str, built: BuiltPayload, queue: asyncio.Queue) -> None:
        """Producer: read the response and push content, then _DONE or a _Failure."""
        extractor = ChunkExtractor(max_buffer_size=self.config.max_buffer_size)
        assembler = ContentAssembler(self.config.agent_turn_separator)
        try:
            async with asyncio.timeout(self.config.webhook_timeout_seconds):
                async with self._http.stream("POST", url, **self._request_kwargs(built)) as response:
                    if response.status_code >= 400:
                        body = await response.aread()
                        raise WebhookHTTPError(response.status_code, upstream_message_from_body(body))

                    async for data in response.aiter_bytes():
                        for fragment in extractor.feed(data):
                            for content in assembler.push(fragment):
                                await queue.put(content)

                    for fragment in extractor.flush():
                        for content in assembler.push(fragment):
                            await queue.put(content)
        except TimeoutError:
            logger.error("webhook.failed", url=url, kind="timeout",
                         timeout_ms=self.config.webhook_timeout_ms)
            await queue.put(_Failure(WebhookTimeoutError(
                f"Webhook call exceeded {self.config.webhook_timeout_ms} ms"
            )))
            return
        except Exception as e:
            error = classify_error(e)
            logger.error("webhook.failed", url=url, kind=error.kind, error=error.message)
            if error is not e:
                error.__cause__ = e
            await queue.put(_Failure(error))
            return

        await queue.put(_DONE)

    async def stream_completion(
        self, url: str, messages, session_id: str, user_context
    ) -> AsyncIterator[str]:
        """Yield content fragments as the webhook produces them.

        Raises:
            WebhookError: Classified transport or HTTP failure.
        """
        built = self.build_payload(messages, session_id, user_context)
        logger.info("webhook.request", url=url, session_id=session_id,
                    multipart=bool(built.files))

        queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.stream_queue_size)
        producer = asyncio.create_task(self._pump(url, built, queue))
        outcome = "cancelled"
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    outcome = "complete"
                    break
                if isinstance(item, _Failure):
                    outcome = "failed"
                    raise item.error
                yield item
        finally:
            if not producer.done():
                producer.cancel()
                await asyncio.wait([producer])
            if outcome == "complete":
                logger.info("webhook.complete", session_id=session_id)
            elif outcome == "cancelled":
                logger.info("webhook.stream_cancelled", session_id=session_id)

    async def complete(self, url: str, messages, session_id: str, user_context) -> str:
        """Run the call to completion and return all content joined together.

        Raises:
            WebhookError: Classified transport or HTTP failure.
        """
        parts = []
        stream = self.stream_completion(url, messages, session_id, user_context)
        try:
            async for content in stream:
                parts.append(content)
        finally:
            await stream.aclose()
        return "".join(parts)
