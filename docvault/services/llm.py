"""
LLM Service

Chat-completion clients used by the query engine.

Providers:
    - OpenAIGenerator: chat completions via AsyncOpenAI (gpt-4o-mini by
      default), streaming with ``stream=True``.
    - OllamaGenerator: local models via the Ollama ``/api/chat``
      endpoint over httpx; streaming reads the NDJSON response line by
      line.

Design:
    - Async HTTP calls (non-blocking).
    - Any provider failure raises GenerationError. Streams close their
      upstream response when the consumer stops iterating.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

import httpx
from openai import AsyncOpenAI, OpenAIError

from docvault.core.config import Settings
from docvault.core.errors import GenerationError, MissingCredentialsError

logger = logging.getLogger(__name__)


class Generator(Protocol):
    """Chat model that answers a user prompt under a system prompt."""

    async def generate(self, system_prompt: str, user_prompt: str) -> str: ...

    def stream(self, system_prompt: str, user_prompt: str) -> AsyncIterator[str]: ...


def _messages(system_prompt: str, user_prompt: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]


class OpenAIGenerator:
    """
    Chat completions from the OpenAI API.

    Usage::

        generator = OpenAIGenerator(api_key="sk-...")
        answer = await generator.generate(SYSTEM_PROMPT, "Question: ...")
        async for text in generator.stream(SYSTEM_PROMPT, "Question: ..."):
            print(text, end="")
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        temperature: float = 0.2,
        timeout: float = 60.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout)
        self._model = model
        self._temperature = temperature

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        """
        Single completion.

        Raises:
            GenerationError: On any API failure.
        """
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=_messages(system_prompt, user_prompt),
                temperature=self._temperature,
            )
        except OpenAIError as exc:
            raise GenerationError(str(exc)) from exc

        content = response.choices[0].message.content or ""
        logger.info(
            "OpenAI response generated (model=%s, length=%d)",
            self._model,
            len(content),
        )
        return content

    async def stream(self, system_prompt: str, user_prompt: str) -> AsyncIterator[str]:
        """
        Yield completion text increments in arrival order.

        Raises:
            GenerationError: On any API failure, before or during streaming.
        """
        try:
            stream = await self._client.chat.completions.create(
                model=self._model,
                messages=_messages(system_prompt, user_prompt),
                temperature=self._temperature,
                stream=True,
            )
        except OpenAIError as exc:
            raise GenerationError(str(exc)) from exc

        try:
            async for event in stream:
                if event.choices and event.choices[0].delta.content:
                    yield event.choices[0].delta.content
        except OpenAIError as exc:
            raise GenerationError(str(exc)) from exc
        finally:
            await stream.close()


class OllamaGenerator:
    """
    Async chat client for a local Ollama server.

    Usage::

        generator = OllamaGenerator(base_url="http://localhost:11434")
        answer = await generator.generate(SYSTEM_PROMPT, "Question: ...")

    Args:
        base_url: Ollama API base URL.
        model: Model name to use.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests inject a MockTransport).
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "mistral",
        temperature: float = 0.2,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._temperature = temperature
        self._timeout = timeout
        self._transport = transport

    def _payload(
        self, system_prompt: str, user_prompt: str, stream: bool
    ) -> dict[str, Any]:
        return {
            "model": self._model,
            "messages": _messages(system_prompt, user_prompt),
            "stream": stream,
            "options": {"temperature": self._temperature},
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        """
        Single completion.

        Raises:
            GenerationError: If Ollama is unreachable, times out or errors.
        """
        url = f"{self._base_url}/api/chat"
        try:
            async with self._client() as client:
                response = await client.post(
                    url, json=self._payload(system_prompt, user_prompt, stream=False)
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise GenerationError(f"Ollama request failed: {exc}") from exc

        content = data.get("message", {}).get("content", "")
        logger.info(
            "Ollama response generated (model=%s, length=%d)",
            self._model,
            len(content),
        )
        return content

    async def stream(self, system_prompt: str, user_prompt: str) -> AsyncIterator[str]:
        """
        Yield completion text increments from the NDJSON stream.

        Raises:
            GenerationError: If the request fails or Ollama reports an error.
        """
        url = f"{self._base_url}/api/chat"
        payload = self._payload(system_prompt, user_prompt, stream=True)
        try:
            async with self._client() as client:
                async with client.stream("POST", url, json=payload) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        data = json.loads(line)
                        if "error" in data:
                            raise GenerationError(f"Ollama error: {data['error']}")
                        text = data.get("message", {}).get("content", "")
                        if text:
                            yield text
                        if data.get("done"):
                            break
        except httpx.HTTPError as exc:
            raise GenerationError(f"Ollama request failed: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise GenerationError(f"Malformed Ollama stream: {exc}") from exc


def build_generator(config: Settings, api_key: str | None = None) -> Generator:
    """
    Generator for the configured provider.

    Raises:
        MissingCredentialsError: OpenAI selected and no key available.
    """
    if config.LLM_PROVIDER == "ollama":
        return OllamaGenerator(
            base_url=config.OLLAMA_BASE_URL,
            model=config.LLM_MODEL,
            temperature=config.LLM_TEMPERATURE,
            timeout=config.LLM_TIMEOUT,
        )

    key = api_key or config.OPENAI_API_KEY
    if not key:
        raise MissingCredentialsError(
            "OpenAI API key is required. Send it in the X-OpenAI-Key header "
            "or configure OPENAI_API_KEY."
        )
    return OpenAIGenerator(
        api_key=key,
        model=config.LLM_MODEL,
        temperature=config.LLM_TEMPERATURE,
        timeout=config.LLM_TIMEOUT,
    )
