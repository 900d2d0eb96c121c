"""
Streaming chat-completion client for OpenAI-compatible endpoints.

Rewrites are streamed over SSE and reported through an
``on_update(partial, is_final)`` callback. When streaming is structurally
unavailable (disabled, the transport refuses the connection before any bytes,
or the response has no body) the client performs one blocking request and
reports its result as a single final update. Failures after a stream has
opened are never downgraded.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx

from ..config import Configuration
from ..logging_utils import ContextualLogger, log_operation
from ..providers.models import DEFAULT_SYSTEM_PROMPT, Provider, RewriteSettings
from ..providers.registry import resolve_base_url, resolve_credential
from .exceptions import (
    ConfigurationError,
    EmptyResponseError,
    ProtocolError,
    TransportError,
)
from .models import ChatMessage, ChatRequest, MessageRole, RewriteRequest
from .prompts import CONNECTION_TEST_PROMPT, build_user_prompt
from .streaming.models import FrameOutcome
from .streaming.parser import (
    StreamingParser,
    UpdateCallback,
    extract_error_message,
    extract_message_content,
)

EMPTY_RESPONSE_MESSAGE = "The AI response was empty. Please try again."
NO_MODELS_MESSAGE = "The provider did not return any models."
LOG_CONTEXT = {"component": "completion_client"}
UNKNOWN_ERROR_SNIPPET = "Unknown error"

HTTP_NO_CONTENT = 204


def _ignore_update(_partial: str, _done: bool) -> None:
    pass


class CompletionClient:
    """
    Client for rewrite, connection-test and model-listing calls.

    Each call owns exactly one HTTP exchange and keeps its stream state local;
    the client holds no lock, so callers serialize overlapping requests.
    """

    def __init__(
        self,
        settings_provider: Callable[[], RewriteSettings],
        *,
        config: Configuration | None = None,
        http_client: httpx.AsyncClient | None = None,
        streaming: bool | None = None,
    ) -> None:
        self.settings_provider = settings_provider
        self.config = config or Configuration()

        llm_config = self.config.get_llm_config()
        self.max_tokens: int = llm_config["max_tokens"]
        self.snippet_chars: int = llm_config["error_snippet_chars"]
        self.credential_env_var: str = llm_config["credential_env_var"]
        self.default_base_url: str = llm_config["default_base_url"]
        self.streaming: bool = (
            bool(llm_config["streaming"]) if streaming is None else streaming
        )

        self._owns_client = http_client is None
        self.client: httpx.AsyncClient = http_client or self._create_http_client()
        self._log = ContextualLogger(LOG_CONTEXT)

    def _create_http_client(self) -> httpx.AsyncClient:
        http_config = self.config.get_http_client_config()
        timeout = httpx.Timeout(
            connect=http_config["connect_timeout"],
            read=http_config["read_timeout"],
            write=http_config["write_timeout"],
            pool=http_config["pool_timeout"],
        )
        return httpx.AsyncClient(timeout=timeout)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def rewrite(
        self, request: RewriteRequest, provider: Provider, model: str
    ) -> str:
        """Streaming rewrite without a progress consumer."""
        return await self.rewrite_streaming(request, provider, model, _ignore_update)

    @log_operation("rewrite_streaming", context=LOG_CONTEXT)
    async def rewrite_streaming(
        self,
        request: RewriteRequest,
        provider: Provider,
        model: str,
        on_update: UpdateCallback,
    ) -> str:
        """
        Rewrite the selected text, streaming partial output.

        ``on_update(partial, False)`` fires for every content delta, followed
        by exactly one ``on_update(final, True)`` with the trimmed result.

        Returns:
            The trimmed rewritten text

        Raises:
            ConfigurationError: If no provider or model is selected
            CredentialError: If no API key resolves for the provider
            TransportError: On HTTP status or connection failures
            ProtocolError: If the provider returns an error payload
            EmptyResponseError: If the response carried no content
        """
        self._require_provider(provider, "requesting a rewrite")
        trimmed_model = model.strip()
        if not trimmed_model:
            raise ConfigurationError(
                "Select a model before requesting a rewrite.",
                provider=provider.name,
            )

        return await self._call_chat_stream(
            provider,
            trimmed_model,
            self._resolve_system_prompt(),
            build_user_prompt(request),
            on_update,
        )

    @log_operation("test_connection", context=LOG_CONTEXT)
    async def test_connection(self, provider: Provider, model: str) -> None:
        """
        Send a minimal prompt and require a well-formed, non-empty answer.
        """
        self._require_provider(provider, "testing the connection")
        trimmed_model = model.strip()
        if not trimmed_model:
            raise ConfigurationError(
                "Select a model before testing the connection.",
                provider=provider.name,
            )

        content = await self._call_chat(
            provider, trimmed_model, self._resolve_system_prompt(), CONNECTION_TEST_PROMPT
        )
        if not content:
            raise EmptyResponseError(
                EMPTY_RESPONSE_MESSAGE, provider=provider.name, model=trimmed_model
            )

    @log_operation("list_models", context=LOG_CONTEXT)
    async def list_models(self, provider: Provider) -> list[str]:
        """
        Fetch the provider's model catalog.

        Returns:
            Unique model identifiers in the order the provider listed them
        """
        self._require_provider(provider, "fetching models")
        base_url = resolve_base_url(provider, self.default_base_url)
        auth_token = resolve_credential(provider, self.credential_env_var)

        try:
            response = await self.client.get(
                f"{base_url}/models",
                headers={"Authorization": f"Bearer {auth_token}"},
            )
        except httpx.HTTPError as e:
            raise TransportError(
                f"Model listing failed: {e}", provider=provider.name
            ) from e

        if not response.is_success:
            raise self._status_error(
                "Model listing failed", response.status_code, response.text, provider.name
            )

        data = self._parse_json_body(response, provider.name, None)
        if error_message := extract_error_message(data):
            raise ProtocolError(error_message, provider=provider.name)

        entries = data.get("data")
        models: dict[str, None] = {}
        if isinstance(entries, list):
            for entry in entries:
                model_id = entry.get("id") if isinstance(entry, dict) else None
                if isinstance(model_id, str) and model_id.strip():
                    models.setdefault(model_id.strip(), None)

        if not models:
            raise EmptyResponseError(NO_MODELS_MESSAGE, provider=provider.name)

        return list(models)

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> CompletionClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Request shaping
    # ------------------------------------------------------------------

    def _resolve_system_prompt(self) -> str:
        settings = self.settings_provider()
        return settings.system_prompt.strip() or DEFAULT_SYSTEM_PROMPT

    def _build_chat_request(
        self, model: str, system_prompt: str, user_prompt: str, *, stream: bool
    ) -> ChatRequest:
        settings = self.settings_provider()
        return ChatRequest(
            model=model,
            messages=[
                ChatMessage(MessageRole.SYSTEM, system_prompt),
                ChatMessage(MessageRole.USER, user_prompt),
            ],
            temperature=settings.temperature,
            max_tokens=self.max_tokens,
            stream=stream,
        )

    @staticmethod
    def _headers(auth_token: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {auth_token}",
        }

    @staticmethod
    def _require_provider(provider: Provider | None, action: str) -> None:
        if provider is None:
            raise ConfigurationError(f"Select a provider before {action}.")

    def _status_error(
        self,
        prefix: str,
        status_code: int,
        body_text: str | None,
        provider: str,
        model: str | None = None,
    ) -> TransportError:
        snippet = (body_text or "")[: self.snippet_chars] or UNKNOWN_ERROR_SNIPPET
        return TransportError(
            f"{prefix} ({status_code}): {snippet}",
            snippet=snippet,
            provider=provider,
            model=model,
            status_code=status_code,
        )

    @staticmethod
    def _parse_json_body(
        response: httpx.Response, provider: str, model: str | None
    ) -> dict[str, Any]:
        if not response.content.strip():
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise ProtocolError(
                f"The provider returned malformed JSON: {e}",
                provider=provider,
                model=model,
            ) from e
        return data if isinstance(data, dict) else {}

    # ------------------------------------------------------------------
    # Blocking call
    # ------------------------------------------------------------------

    async def _call_chat(
        self, provider: Provider, model: str, system_prompt: str, user_prompt: str
    ) -> str:
        """One non-streaming completion; returns trimmed (possibly empty) content."""
        base_url = resolve_base_url(provider, self.default_base_url)
        auth_token = resolve_credential(provider, self.credential_env_var)
        body = self._build_chat_request(model, system_prompt, user_prompt, stream=False)

        try:
            response = await self.client.post(
                f"{base_url}/chat/completions",
                headers=self._headers(auth_token),
                json=body.to_payload(),
            )
        except httpx.HTTPError as e:
            raise TransportError(
                f"Request failed: {e}", provider=provider.name, model=model
            ) from e

        if not response.is_success:
            raise self._status_error(
                "Request failed", response.status_code, response.text, provider.name, model
            )

        data = self._parse_json_body(response, provider.name, model)
        if error_message := extract_error_message(data):
            raise ProtocolError(error_message, provider=provider.name, model=model)

        return extract_message_content(data).strip()

    async def _fallback_to_blocking(
        self,
        provider: Provider,
        model: str,
        system_prompt: str,
        user_prompt: str,
        on_update: UpdateCallback,
    ) -> str:
        result = await self._call_chat(provider, model, system_prompt, user_prompt)
        on_update(result, True)
        if not result:
            raise EmptyResponseError(
                EMPTY_RESPONSE_MESSAGE, provider=provider.name, model=model
            )
        return result

    # ------------------------------------------------------------------
    # Streaming call
    # ------------------------------------------------------------------

    async def _call_chat_stream(
        self,
        provider: Provider,
        model: str,
        system_prompt: str,
        user_prompt: str,
        on_update: UpdateCallback,
    ) -> str:
        base_url = resolve_base_url(provider, self.default_base_url)
        auth_token = resolve_credential(provider, self.credential_env_var)
        log = self._log.bind(provider=provider.name, model=model)

        if not self.streaming:
            log.debug("Streaming disabled, using a blocking request")
            return await self._fallback_to_blocking(
                provider, model, system_prompt, user_prompt, on_update
            )

        body = self._build_chat_request(model, system_prompt, user_prompt, stream=True)
        request = self.client.build_request(
            "POST",
            f"{base_url}/chat/completions",
            headers=self._headers(auth_token),
            json=body.to_payload(),
        )

        try:
            response = await self.client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise TransportError(
                f"Request timed out: {e}", provider=provider.name, model=model
            ) from e
        except httpx.TransportError as e:
            log.warning(
                "Streaming transport failed before any data, falling back",
                error=str(e),
            )
            return await self._fallback_to_blocking(
                provider, model, system_prompt, user_prompt, on_update
            )

        try:
            if not response.is_success:
                try:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                except httpx.HTTPError as e:
                    log.warning("Could not read error body", error=str(e))
                    raise self._status_error(
                        "Request failed", response.status_code, None, provider.name, model
                    ) from e
                raise self._status_error(
                    "Request failed",
                    response.status_code,
                    error_text,
                    provider.name,
                    model,
                )

            if not self._has_readable_body(response):
                await response.aclose()
                log.warning("Streaming response has no body, falling back")
                return await self._fallback_to_blocking(
                    provider, model, system_prompt, user_prompt, on_update
                )

            return await self._read_stream(response, provider, model, on_update)
        finally:
            await response.aclose()

    @staticmethod
    def _has_readable_body(response: httpx.Response) -> bool:
        if response.status_code == HTTP_NO_CONTENT:
            return False
        return response.headers.get("content-length", "").strip() != "0"

    async def _read_stream(
        self,
        response: httpx.Response,
        provider: Provider,
        model: str,
        on_update: UpdateCallback,
    ) -> str:
        parser = StreamingParser(on_update, provider=provider.name, model=model)

        try:
            async for chunk in response.aiter_bytes():
                if parser.feed(chunk) is FrameOutcome.COMPLETE:
                    break
            else:
                parser.finish()
        except httpx.HTTPError as e:
            raise TransportError(
                f"Stream interrupted: {e}", provider=provider.name, model=model
            ) from e

        self._log.debug(
            "Stream finished", provider=provider.name, model=model, **parser.get_stats()
        )

        final_text = parser.flush_final()
        if not parser.session.has_content:
            raise EmptyResponseError(
                EMPTY_RESPONSE_MESSAGE, provider=provider.name, model=model
            )
        return final_text
