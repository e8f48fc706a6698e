"""
HTTP client for the streaming chat endpoint.

Opens the response stream with retries, then feeds raw chunks to a
``StreamPipeline`` until ``[DONE]``, stream close, abort or transport error.
"""
import asyncio
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from chatstream.runtime.rate_limit import RETRYABLE_STATUS_CODES, RetryableHttpStatus, async_invoke_with_retry
from config_system.config_loader import ClientConfig
from core.pipeline import StreamPipeline
from exceptions import HttpStatusError, TransportError
from logging_config import log_error, log_step_complete, log_step_start, log_warning

logger = logging.getLogger(__name__)


class StaticSessionProvider:
    """Session identity taken from configuration."""

    def __init__(self, session_id: str = "default", user_id: str = "anonymous"):
        self.session_id = session_id
        self.user_id = user_id

    def current(self) -> Dict[str, str]:
        return {"session_id": self.session_id, "user_id": self.user_id}


class ChatClient:
    """Sends prompts and drives the pipeline with the streamed response."""

    def __init__(self, config: ClientConfig, pipeline: StreamPipeline,
                 session_provider: Optional[StaticSessionProvider] = None,
                 http_client: Optional[httpx.AsyncClient] = None,
                 sleep: Optional[Callable[[float], Awaitable[Any]]] = None):
        self.config = config
        self.pipeline = pipeline
        self.session_provider = session_provider or StaticSessionProvider(
            config.session.session_id, config.session.user_id)
        self._http_client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep
        self._in_flight: Optional[str] = None
        self._aborted = False

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.config.transport.timeout_seconds)
        return self._http_client

    @property
    def in_flight(self) -> Optional[str]:
        return self._in_flight

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "ChatClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def build_body(self, text: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        metadata = metadata or {}
        session = self.session_provider.current()
        return {
            "message": text,
            "session_id": metadata.get("session_id") or session["session_id"],
            "user_id": metadata.get("user_id") or session["user_id"],
            "use_streaming": True,
            "template_parameters": metadata.get("template_parameters") or {},
        }

    async def send_prompt(self, text: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        """
        Send one prompt and stream the response through the pipeline.

        Returns:
            The request id.

        Raises:
            HttpStatusError: non-success status after retries.
            TransportError: connection failure, or the stream broke mid-response.
        """
        request_id = str(uuid.uuid4())
        body = self.build_body(text, metadata)
        url = self.config.chat_url
        self._in_flight = request_id
        self._aborted = False
        started = time.time()
        log_step_start(logger, "ChatClient", "send_prompt", "Sending prompt",
                       {"request_id": request_id, "url": url, "session_id": body["session_id"]})

        try:
            response = await self._open_stream(url, body, request_id)
        except TransportError as e:
            log_error(logger, f"Failed to open response stream: {e}", "ChatClient", e,
                      {"request_id": request_id})
            self.pipeline.transport_failed(e)
            self._in_flight = None
            raise
        except asyncio.CancelledError:
            self.pipeline.abort("Request cancelled")
            self._in_flight = None
            raise

        frames = 0
        try:
            self.pipeline.begin_stream()
            async for chunk in response.aiter_bytes():
                if self._aborted:
                    break
                frames += self.pipeline.feed_chunk(chunk)
                if self.pipeline.decoder.done:
                    break
            if not self._aborted:
                self.pipeline.finish_stream()
        except httpx.HTTPError as e:
            error = TransportError(f"Stream interrupted: {e}")
            log_error(logger, str(error), "ChatClient", e, {"request_id": request_id, "frames": frames})
            self.pipeline.transport_failed(error)
            raise error from e
        except asyncio.CancelledError:
            log_warning(logger, "Prompt cancelled mid-stream", "ChatClient",
                        {"request_id": request_id, "frames": frames})
            self._aborted = True
            self.pipeline.abort("Request cancelled")
            raise
        finally:
            await response.aclose()
            self._in_flight = None

        log_step_complete(logger, "ChatClient", "send_prompt", "Response stream finished",
                          {"request_id": request_id, "frames": frames, "aborted": self._aborted},
                          duration_ms=(time.time() - started) * 1000)
        return request_id

    def abort(self) -> bool:
        """Stop reading the in-flight response; the active message is force-finalized."""
        if self._in_flight is None:
            return False
        self._aborted = True
        self.pipeline.abort()
        return True

    async def _open_stream(self, url: str, body: Dict[str, Any], request_id: str) -> httpx.Response:
        headers = {
            "Accept": "text/event-stream",
            "X-Request-ID": request_id,
        }

        async def attempt() -> httpx.Response:
            request = self.http_client.build_request("POST", url, json=body, headers=headers)
            response = await self.http_client.send(request, stream=True)
            if response.status_code in RETRYABLE_STATUS_CODES:
                await response.aclose()
                raise RetryableHttpStatus(response)
            if response.status_code >= 400:
                snippet = (await response.aread())[:200].decode("utf-8", errors="replace")
                await response.aclose()
                raise HttpStatusError(response.status_code, url, snippet)
            return response

        transport = self.config.transport
        try:
            return await async_invoke_with_retry(
                attempt,
                max_retries=transport.max_retries,
                initial_delay=transport.initial_delay,
                exponential_base=transport.exponential_base,
                max_wait_seconds=transport.max_wait_seconds,
                sleep=self._sleep,
            )
        except RetryableHttpStatus as e:
            raise e.to_http_status_error() from e
        except httpx.HTTPError as e:
            raise TransportError(f"Could not reach {url}: {e}") from e
