"""Streaming model providers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Literal, Protocol, Sequence

import httpx
import openai

from ragedit.errors import ProviderError, TransientProviderError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionRequest:
    """Prompt and model parameters for one streamed completion.

    ``resume_from`` holds output already received before a transient failure;
    providers continue after it instead of starting over.
    """

    prompt: str
    system: str | None = None
    model: str = "gpt-3.5-turbo"
    temperature: float = 0.2
    max_tokens: int = 1024
    resume_from: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderEvent:
    """One item of a provider stream: a text delta, the finish marker or an error."""

    kind: Literal["delta", "finish", "error"]
    text: str = ""
    reason: str | None = None
    transient: bool = False

    @classmethod
    def delta(cls, text: str) -> "ProviderEvent":
        return cls(kind="delta", text=text)

    @classmethod
    def finish(cls, reason: str = "stop") -> "ProviderEvent":
        return cls(kind="finish", reason=reason)

    @classmethod
    def error(cls, reason: str, transient: bool = False) -> "ProviderEvent":
        return cls(kind="error", reason=reason, transient=transient)


class ModelProvider(Protocol):
    """Protocol describing streamed generation."""

    def stream(self, request: CompletionRequest) -> AsyncIterator[ProviderEvent]:
        """Yield deltas in order, ending with a finish or error event."""


class ScriptedProvider:
    """Deterministic provider used for tests and offline environments.

    ``script`` is either a fixed list of deltas or a callable building the
    deltas from the request. Resumed requests skip the part of the script
    already covered by ``resume_from``.
    """

    def __init__(
        self,
        script: Sequence[str] | Callable[[CompletionRequest], Sequence[str]],
        *,
        delay_seconds: float = 0.0,
    ) -> None:
        self._script = script
        self._delay = delay_seconds
        self.requests: list[CompletionRequest] = []

    async def stream(self, request: CompletionRequest) -> AsyncIterator[ProviderEvent]:
        self.requests.append(request)
        deltas = list(self._script(request) if callable(self._script) else self._script)
        skip = len(request.resume_from)
        for delta in deltas:
            if skip >= len(delta):
                skip -= len(delta)
                continue
            delta, skip = delta[skip:], 0
            if self._delay:
                await asyncio.sleep(self._delay)
            else:
                await asyncio.sleep(0)
            yield ProviderEvent.delta(delta)
        yield ProviderEvent.finish()


def echo_region(request: CompletionRequest) -> Sequence[str]:
    """Script that returns the passage under edit unchanged, word by word."""

    passage = request.metadata.get("region_text", "")
    words = passage.split(" ")
    return [word if index == 0 else f" {word}" for index, word in enumerate(words)]


class OpenAIStreamProvider:
    """Stream chat completions through the OpenAI API."""

    _CONTINUE = "Continue exactly where you stopped. Do not repeat any text you already wrote."

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        # retries happen per stream in the orchestrator, with resume
        self._client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0, http_client=http_client)

    async def stream(self, request: CompletionRequest) -> AsyncIterator[ProviderEvent]:
        messages: list[dict[str, str]] = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.append({"role": "user", "content": request.prompt})
        if request.resume_from:
            messages.append({"role": "assistant", "content": request.resume_from})
            messages.append({"role": "user", "content": self._CONTINUE})

        try:
            response = await self._client.chat.completions.create(
                model=request.model,
                messages=messages,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                stream=True,
            )
            async for chunk in response:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                content = choice.delta.content if choice.delta is not None else None
                if content:
                    yield ProviderEvent.delta(content)
                if choice.finish_reason:
                    yield ProviderEvent.finish(choice.finish_reason)
                    return
        except (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError) as exc:
            raise TransientProviderError(f"{type(exc).__name__}: {exc}") from exc
        except openai.APIError as exc:
            raise ProviderError(f"{type(exc).__name__}: {exc}") from exc
        LOGGER.warning("OpenAI stream for %s ended without a finish reason", request.model)
        raise TransientProviderError("Provider stream ended without a finish marker")
