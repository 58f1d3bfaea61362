import asyncio
import os
from typing import Optional

import httpx

from postop_monitor.prompts import ESCALATION_SYSTEM

OPENAI_CHAT_COMPLETIONS_URL = "https://api.openai.com/v1/chat/completions"


class OpenAIClient:
    """Chat-completions client used to draft escalation summaries."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 60.0,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        max_tokens: int = 600,
    ) -> None:
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise RuntimeError("Missing OPENAI_API_KEY")
        self._transport = transport
        self._timeout = timeout
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._max_tokens = max_tokens

    @property
    def model(self) -> str:
        return os.getenv("OPENAI_MODEL_ESCALATION", "gpt-4")

    async def complete(self, prompt: str) -> str:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": ESCALATION_SYSTEM},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.0,
            "max_tokens": self._max_tokens,
        }

        data = await self._request_with_retry(headers=headers, payload=payload)
        if not isinstance(data, dict):
            raise RuntimeError("Unexpected OpenAI response format")

        text = []
        for choice in data.get("choices", []):
            if not isinstance(choice, dict):
                continue
            message = choice.get("message")
            if isinstance(message, dict):
                content_piece = message.get("content")
                if content_piece:
                    text.append(str(content_piece))

        return "".join(text).strip()

    async def _request_with_retry(self, *, headers: dict[str, str], payload: dict):
        attempts = 0
        last_error: Exception | None = None
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            while attempts <= self._max_retries:
                attempts += 1
                try:
                    response = await client.post(
                        OPENAI_CHAT_COMPLETIONS_URL,
                        headers=headers,
                        json=payload,
                    )
                    response.raise_for_status()
                    return response.json()
                except httpx.HTTPStatusError as exc:
                    last_error = exc
                    status_code = exc.response.status_code
                    if not self._should_retry(status_code) or attempts > self._max_retries:
                        raise RuntimeError(self._format_error(status_code)) from exc
                    await self._sleep(
                        self._retry_delay(exc.response.headers.get("Retry-After"), attempts)
                    )
                except httpx.RequestError as exc:
                    last_error = exc
                    if attempts > self._max_retries:
                        raise RuntimeError("Unable to reach OpenAI API") from exc
                    await self._sleep(self._retry_delay(None, attempts))

        raise RuntimeError("Failed to contact OpenAI API") from last_error

    def _should_retry(self, status_code: int) -> bool:
        return status_code == 429 or 500 <= status_code < 600

    def _retry_delay(self, retry_after: Optional[str], attempts: int) -> float:
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                pass
        return self._backoff_base * (2 ** (attempts - 1))

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def _format_error(self, status_code: int) -> str:
        if status_code in (401, 403):
            return "OpenAI API rejected the API key. Check the key and its permissions."
        if status_code == 429:
            return "OpenAI API rate limit exceeded. Please try again shortly."
        if 500 <= status_code < 600:
            return "OpenAI API is currently unavailable. Please retry later."
        return "Unexpected OpenAI API error."
