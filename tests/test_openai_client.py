import json

import httpx
import pytest

from postop_monitor.openai_client import OPENAI_CHAT_COMPLETIONS_URL, OpenAIClient
from postop_monitor.prompts import ESCALATION_SYSTEM


@pytest.mark.asyncio
async def test_complete_builds_escalation_messages(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("OPENAI_MODEL_ESCALATION", raising=False)
    captured: dict[str, object] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["headers"] = dict(request.headers)
        captured["payload"] = json.loads(request.content.decode())
        return httpx.Response(
            200,
            json={"choices": [{"message": {"content": " Urgency: Soon \n"}}]},
        )

    transport = httpx.MockTransport(handler)
    client = OpenAIClient(api_key="test", transport=transport)

    result = await client.complete("Patient is tired")

    assert result == "Urgency: Soon"
    assert captured["url"] == OPENAI_CHAT_COMPLETIONS_URL
    assert captured["headers"]["authorization"] == "Bearer test"
    payload = captured["payload"]
    assert payload["model"] == "gpt-4"
    assert payload["temperature"] == 0.0
    assert payload["messages"][0] == {"role": "system", "content": ESCALATION_SYSTEM}
    assert payload["messages"][1] == {"role": "user", "content": "Patient is tired"}


@pytest.mark.asyncio
async def test_model_can_be_overridden_from_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("OPENAI_MODEL_ESCALATION", "gpt-4o-mini")
    models: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        models.append(json.loads(request.content.decode())["model"])
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    client = OpenAIClient(api_key="test", transport=httpx.MockTransport(handler))

    await client.complete("Patient")

    assert models == ["gpt-4o-mini"]


def test_client_requires_api_key(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(RuntimeError):
        OpenAIClient(api_key=None)


@pytest.mark.asyncio
async def test_complete_retries_on_rate_limit(monkeypatch: pytest.MonkeyPatch):
    attempts: list[int] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        if len(attempts) == 1:
            return httpx.Response(429, headers={"Retry-After": "0"})
        return httpx.Response(
            200,
            json={"choices": [{"message": {"content": "Recovered"}}]},
        )

    async def fake_sleep(self, seconds: float) -> None:  # type: ignore[override]
        return None

    monkeypatch.setattr(OpenAIClient, "_sleep", fake_sleep, raising=False)

    transport = httpx.MockTransport(handler)
    client = OpenAIClient(api_key="test", transport=transport, backoff_base=0.0)

    result = await client.complete("Patient")

    assert result == "Recovered"
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_complete_retries_server_errors_then_gives_up(monkeypatch: pytest.MonkeyPatch):
    attempts: list[int] = []
    delays: list[float] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        return httpx.Response(503)

    async def fake_sleep(self, seconds: float) -> None:  # type: ignore[override]
        delays.append(seconds)

    monkeypatch.setattr(OpenAIClient, "_sleep", fake_sleep, raising=False)
    client = OpenAIClient(api_key="test", transport=httpx.MockTransport(handler), max_retries=2)

    with pytest.raises(RuntimeError) as excinfo:
        await client.complete("Patient")

    assert "unavailable" in str(excinfo.value).lower()
    assert len(attempts) == 3
    assert delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_complete_raises_friendly_error_on_exhausted_retries():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429)

    transport = httpx.MockTransport(handler)
    client = OpenAIClient(api_key="test", transport=transport, max_retries=0)

    with pytest.raises(RuntimeError) as excinfo:
        await client.complete("Patient")

    assert "rate limit" in str(excinfo.value).lower()


@pytest.mark.asyncio
async def test_complete_raises_on_invalid_api_key():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401)

    transport = httpx.MockTransport(handler)
    client = OpenAIClient(api_key="test", transport=transport, max_retries=3)

    with pytest.raises(RuntimeError) as excinfo:
        await client.complete("Patient")

    message = str(excinfo.value)
    assert "api key" in message.lower()
    assert "permissions" in message.lower()


@pytest.mark.asyncio
async def test_complete_raises_on_request_error():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    transport = httpx.MockTransport(handler)
    client = OpenAIClient(api_key="test", transport=transport, max_retries=0)

    with pytest.raises(RuntimeError) as excinfo:
        await client.complete("Patient")

    message = str(excinfo.value)
    assert "unable to reach openai api" in message.lower()


@pytest.mark.asyncio
async def test_complete_returns_empty_text_when_no_choices():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    client = OpenAIClient(api_key="test", transport=httpx.MockTransport(handler))

    assert await client.complete("Patient") == ""
