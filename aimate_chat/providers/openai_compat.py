#!/usr/bin/env python3
"""
OpenAI-Compatible Provider
==========================

Streams ``/chat/completions`` from any OpenAI-compatible server (LM Studio,
LiteLLM, vLLM, OpenRouter, ...) over Server-Sent Events.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp

from aimate_chat.agent.structs import CompletionRequest
from aimate_chat.config.settings import ConnectionSettings
from aimate_chat.exceptions import (
    ProviderAuthenticationError,
    ProviderConfigurationError,
    ProviderConnectionError,
    ProviderError,
    ProviderModelNotFoundError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderServerError,
    ProviderTimeoutError,
)
from aimate_chat.utils.retry import retry_on_transient_errors

from .base import BaseProvider

SSE_DATA_PREFIX = "data: "
SSE_DONE = "[DONE]"


class OpenAICompatibleProvider(BaseProvider):
    """
    aiohttp client for one configured connection.

    The session is created lazily and reused across requests. Every request
    is bounded by ``request_timeout`` seconds end to end.
    """

    def __init__(
        self,
        connection: ConnectionSettings,
        request_timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        if not connection.enabled:
            raise ProviderConfigurationError(
                f"Connection '{connection.name}' is disabled"
            )
        if not connection.base_url:
            raise ProviderConfigurationError(
                f"Connection '{connection.name}' has no base URL"
            )

        self.connection = connection
        self.base_url = connection.base_url
        self.chat_url = f"{self.base_url}/chat/completions"
        self.models_url = f"{self.base_url}/models"
        self.timeout = request_timeout

        self._session = session
        self._owns_session = session is None
        self._logger = logging.getLogger("OpenAICompatibleProvider")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        api_key = self.connection.api_key_value
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def _client_timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.timeout)

    # --- Streaming ---

    async def stream_chat(self, request: CompletionRequest) -> AsyncIterator[str]:
        session = await self._get_session()
        payload = request.to_payload()
        self._logger.debug(
            "POST %s model=%s messages=%d",
            self.chat_url,
            request.model,
            len(request.messages),
        )

        try:
            async with session.post(
                self.chat_url,
                json=payload,
                headers=self._headers(),
                timeout=self._client_timeout(),
            ) as response:
                await self._check_error_status(response, request.model)
                async for chunk in self._process_stream_response(response):
                    yield chunk

        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError(
                f"Model request timed out after {self.timeout}s",
                timeout_seconds=self.timeout,
                model_name=request.model,
                original_error=exc,
            ) from exc
        except aiohttp.ClientError as exc:
            raise ProviderConnectionError(
                f"Server communication error: {exc}",
                model_name=request.model,
                original_error=exc,
            ) from exc

    async def _process_stream_response(
        self, response: aiohttp.ClientResponse
    ) -> AsyncIterator[str]:
        """
        Parse Server-Sent Events into content deltas.

        Yields:
            str: ``choices[0].delta.content`` of each frame, when non-empty.
        """
        finished = False

        async for line in response.content:
            if not line:
                continue

            try:
                line_str = line.decode("utf-8").strip()
            except UnicodeDecodeError as e:
                self._logger.debug("Skipping undecodable frame: %r (%s)", line, e)
                continue
            if not line_str.startswith(SSE_DATA_PREFIX):
                continue

            data = line_str[len(SSE_DATA_PREFIX):].strip()
            if data == SSE_DONE:
                finished = True
                break

            try:
                frame = json.loads(data)
            except json.JSONDecodeError as e:
                self._logger.debug("Skipping malformed frame: %s (%s)", data, e)
                continue

            if not isinstance(frame, dict):
                self._logger.debug("Skipping non-object frame: %s", data)
                continue

            if "error" in frame:
                raise ProviderResponseError(
                    f"Model server reported an error: {self._error_text(frame['error'])}",
                    details={"frame": frame},
                )

            content, finish_reason = self._extract_chunk(frame)
            if content:
                yield content
            if finish_reason:
                finished = True

        if not finished:
            raise ProviderConnectionError("Stream closed before completion")

    @staticmethod
    def _extract_chunk(frame: Dict[str, Any]):
        choices = frame.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return None, None
        delta = choices[0].get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
        return content, choices[0].get("finish_reason")

    @staticmethod
    def _error_text(error: Any) -> str:
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(error)

    # --- Error classification ---

    async def _check_error_status(
        self, response: aiohttp.ClientResponse, model_name: str
    ) -> None:
        """
        Map HTTP error statuses onto the provider exception hierarchy.
        """
        if response.status < 400:
            return

        error_text = await response.text()
        status = response.status

        if status in (401, 403):
            raise ProviderAuthenticationError(
                f"Authentication failed ({status}): {error_text}",
                status_code=status,
                model_name=model_name,
            )
        if status == 404:
            available = await self._fetch_available_models()
            raise ProviderModelNotFoundError(
                f"Model '{model_name}' not found: {error_text}",
                available_models=available,
                status_code=status,
                model_name=model_name,
            )
        if status == 429:
            raise ProviderRateLimitError(
                f"Rate limit exceeded: {error_text}",
                retry_after=response.headers.get("Retry-After"),
                status_code=status,
                model_name=model_name,
            )
        if status >= 500:
            raise ProviderServerError(
                f"Server error {status}: {error_text}",
                status_code=status,
                model_name=model_name,
            )
        raise ProviderResponseError(
            f"Client error {status}: {error_text}",
            status_code=status,
            model_name=model_name,
        )

    async def _fetch_available_models(self) -> List[str]:
        """Best effort; a failed lookup only loses the hint."""
        try:
            return await self._fetch_models()
        except (ProviderError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._logger.debug("Model listing failed: %s", e)
            return []

    # --- Model listing / health ---

    async def _fetch_models(self) -> List[str]:
        session = await self._get_session()
        async with session.get(
            self.models_url, headers=self._headers(), timeout=self._client_timeout()
        ) as response:
            if response.status in (401, 403):
                raise ProviderAuthenticationError(
                    f"Authentication failed ({response.status})",
                    status_code=response.status,
                )
            if response.status >= 500:
                raise ProviderServerError(
                    f"Server error {response.status}", status_code=response.status
                )
            if response.status >= 400:
                raise ProviderResponseError(
                    f"Model listing failed ({response.status})",
                    status_code=response.status,
                )
            data = await response.json(content_type=None)

        entries = data.get("data", []) if isinstance(data, dict) else []
        return [entry["id"] for entry in entries if isinstance(entry, dict) and "id" in entry]

    @retry_on_transient_errors(max_attempts=3)
    async def list_models(self) -> List[str]:
        try:
            return await self._fetch_models()
        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError(
                "Model listing timed out", timeout_seconds=self.timeout
            ) from exc
        except aiohttp.ClientError as exc:
            raise ProviderConnectionError(
                f"Server communication error: {exc}", original_error=exc
            ) from exc

    async def validate_connection(self) -> bool:
        try:
            await self._fetch_models()
            return True
        except (ProviderError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._logger.warning("Connection check failed for %s: %s", self.base_url, e)
            return False

    async def close(self) -> None:
        """
        Close the HTTP session if this provider created it.
        """
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
