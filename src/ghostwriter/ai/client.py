"""Async completion client built around OpenAI-compatible endpoints."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, Iterable, List, Mapping, Protocol, Sequence, cast

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError, RateLimitError
from openai.lib.streaming.chat import ChatCompletionStreamEvent
from openai.types.chat import ChatCompletionMessageParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from . import prompts

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import EditorSettings

__all__ = [
    "AIClient",
    "AIStreamEvent",
    "ClientSettings",
    "CompletionOptions",
    "CompletionService",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class CompletionOptions:
    """Per-request knobs forwarded to the completion endpoint."""

    model_id: str
    temperature: float = 0.7
    custom_instructions: str | None = None
    writing_type: str | None = None
    max_tokens: int | None = None


class CompletionService(Protocol):
    """Boundary consumed by the suggestion and selection controllers.

    Implementations resolve to the final text or raise; an empty string is
    a valid (degenerate) answer and is not an error.
    """

    async def complete(self, context: str, options: CompletionOptions) -> str:
        ...

    async def transform(
        self,
        action: str,
        selected_text: str,
        options: CompletionOptions,
        *,
        before: str = "",
        after: str = "",
    ) -> str:
        ...


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    model: str
    request_timeout: float | None = 30.0
    max_retries: int = 2
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 4.0
    continuation_max_tokens: int = 150
    selection_max_tokens: int = 2_000
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False

    @classmethod
    def from_settings(cls, settings: "EditorSettings") -> "ClientSettings":
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            model=settings.model,
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            default_headers=dict(settings.default_headers) or None,
            debug_logging=settings.debug_logging,
        )


@dataclass(slots=True)
class AIStreamEvent:
    """Normalized representation of streaming deltas."""

    type: str
    content: str | None = None


class AIClient:
    """Async client providing continuation and selection helpers with retry semantics."""

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._models_cache: List[str] | None = None
        self._models_lock = asyncio.Lock()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def complete(self, context: str, options: CompletionOptions) -> str:
        """Return the raw continuation the model proposes for ``context``."""

        messages = prompts.continuation_messages(
            context,
            writing_type=options.writing_type,
            custom_instructions=options.custom_instructions,
        )
        return await self._collect(
            messages,
            model=options.model_id,
            temperature=options.temperature,
            max_tokens=options.max_tokens or self._settings.continuation_max_tokens,
        )

    async def transform(
        self,
        action: str,
        selected_text: str,
        options: CompletionOptions,
        *,
        before: str = "",
        after: str = "",
    ) -> str:
        """Return the replacement text for an expand/rewrite/improve action."""

        messages = prompts.selection_messages(
            action,
            selected_text,
            before=before,
            after=after,
            writing_type=options.writing_type,
            custom_instructions=options.custom_instructions,
        )
        return await self._collect(
            messages,
            model=options.model_id,
            temperature=options.temperature,
            max_tokens=options.max_tokens or self._settings.selection_max_tokens,
        )

    async def stream_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        model: str | None = None,
        temperature: float | None = 0.7,
        max_tokens: int | None = None,
        **extra_params: Any,
    ) -> AsyncIterator[AIStreamEvent]:
        """Stream chat completions for the provided messages."""

        payload = self._build_chat_payload(
            messages=self._coerce_messages(messages),
            model=model or self._settings.model,
            temperature=temperature,
            max_tokens=max_tokens,
            extra_params=extra_params,
        )
        LOGGER.debug(
            "Starting streamed chat completion via %s with %s message(s)",
            payload["model"],
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        async for attempt in self._retrying():
            with attempt:
                async with self._client.chat.completions.stream(**payload) as stream:
                    async for event in stream:
                        normalized = self._normalize_stream_event(event)
                        if normalized is not None:
                            yield normalized
                break

    async def list_models(self, *, force_refresh: bool = False) -> List[str]:
        """Return a list of model identifiers served by the endpoint."""

        if self._models_cache is not None and not force_refresh:
            return list(self._models_cache)

        async with self._models_lock:
            if self._models_cache is not None and not force_refresh:
                return list(self._models_cache)

            response = await self._client.models.list()
            models = [item.id for item in response.data if getattr(item, "id", None)]
            self._models_cache = models
            return list(models)

    async def _collect(
        self,
        messages: Sequence[Mapping[str, str]],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        chunks: list[str] = []
        final_text: str | None = None
        async for event in self.stream_chat(
            messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        ):
            if event.type == "content.delta" and event.content:
                chunks.append(event.content)
            elif event.type == "content.done" and event.content is not None:
                final_text = event.content
        # content.done carries the full message; deltas are only a fallback.
        return final_text if final_text is not None else "".join(chunks)

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            default_headers=headers,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(
                (
                    APIError,
                    APIStatusError,
                    APIConnectionError,
                    RateLimitError,
                    httpx.TimeoutException,
                )
            ),
        )

    def _coerce_messages(
        self, messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam]
    ) -> List[ChatCompletionMessageParam]:
        normalized: List[ChatCompletionMessageParam] = []
        for message in messages:
            try:
                normalized.append(cast(ChatCompletionMessageParam, dict(message)))
            except TypeError as exc:
                raise TypeError("Messages must be mapping-like objects") from exc
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        return normalized

    def _build_chat_payload(
        self,
        *,
        messages: Sequence[ChatCompletionMessageParam],
        model: str,
        temperature: float | None,
        max_tokens: int | None,
        extra_params: Mapping[str, Any],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": list(messages),
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if extra_params:
            payload.update(extra_params)
        return payload

    def _normalize_stream_event(self, event: ChatCompletionStreamEvent[Any]) -> AIStreamEvent | None:
        event_type = getattr(event, "type", None)
        if event_type == "content.delta":
            delta_text = getattr(event, "delta", None)
            if delta_text:
                return AIStreamEvent(type=event_type, content=str(delta_text))
            return None
        if event_type == "content.done":
            return AIStreamEvent(type=event_type, content=getattr(event, "content", None))
        if event_type == "refusal.done":
            LOGGER.info("Model refused the request: %s", getattr(event, "refusal", None))
        return None

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result
