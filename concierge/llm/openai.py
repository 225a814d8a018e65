"""OpenAI-compatible provider (OpenAI, Groq, Together, etc.)."""

import asyncio
import logging
from typing import Optional

import httpx

from .provider import (
    ChatMessage,
    ChatResponse,
    LLMAuthError,
    LLMBadRequestError,
    LLMEmptyResponseError,
    LLMProvider,
    LLMRateLimitError,
)

logger = logging.getLogger("concierge.llm.openai")


class OpenAIProvider(LLMProvider):
    """OpenAI-compatible API provider.

    Works with any OpenAI-compatible endpoint:
    - OpenAI: https://api.openai.com/v1
    - Groq:   https://api.groq.com/openai/v1
    - Together: https://api.together.xyz/v1
    """

    def __init__(
        self,
        api_key: str,
        chat_model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        provider_name: str = "openai",
        timeout: float = 60.0,
    ):
        self.api_key = api_key
        self.chat_model = chat_model
        self.base_url = base_url.rstrip("/")
        self._provider_name = provider_name
        self.timeout = timeout

    @property
    def name(self) -> str:
        return self._provider_name

    def _get_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _raise_for_status(resp: httpx.Response):
        """Map HTTP error codes to typed LLM errors."""
        code = resp.status_code
        if code == 429:
            retry_after = resp.headers.get("retry-after", "a moment")
            raise LLMRateLimitError(f"Rate limited. Retry after {retry_after}.")
        if code in (401, 403):
            raise LLMAuthError(f"HTTP {code}: {resp.text[:200]}")
        if code == 400:
            raise LLMBadRequestError(resp.text[:200])
        resp.raise_for_status()

    async def chat(
        self,
        messages: list[ChatMessage],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> ChatResponse:
        model = model or self.chat_model
        body: dict = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature,
        }
        if max_tokens and max_tokens > 0:
            body["max_tokens"] = max_tokens

        logger.debug(f"Request: model={model}, messages={len(messages)}")

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(2):
                resp = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=body,
                    headers=self._get_headers(),
                )
                if 500 <= resp.status_code < 600 and attempt < 1:
                    logger.warning(f"{self.name} {resp.status_code}, retrying in 1s (attempt {attempt + 1}/2): {resp.text[:200]}")
                    await asyncio.sleep(1)
                    continue
                self._raise_for_status(resp)
                break

        data = resp.json()
        content = (data["choices"][0]["message"].get("content") or "").strip()
        if not content:
            raise LLMEmptyResponseError("Empty completion")

        usage = data.get("usage", {})
        return ChatResponse(
            content=content,
            model=data.get("model", model),
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
        )
