import httpx
import pytest

from chat_core.domain.exceptions import ApiError, ModelError, NetworkError, RateLimitError, ValidationError
from chat_core.domain.models import ChatCompletionRequest
from chat_core.providers import create_provider
from chat_core.providers.anthropic_client import AnthropicClient
from chat_core.providers.openai_client import OpenAIClient


class SettingsStub:
    default_provider = "openai"
    openai_api_key = "sk-test-0123456789"
    openai_base_url = "https://api.openai.com/v1/"
    anthropic_api_key = "ak-test-0123456789"
    anthropic_base_url = "https://api.anthropic.com/v1"
    anthropic_version = "2023-06-01"
    anthropic_max_tokens = 1024
    http_timeout = 1.0


class FakeResponse:
    def __init__(self, status_code=200, chunks=(), body=b""):
        self.status_code = status_code
        self._chunks = list(chunks)
        self._body = body
        self.closed = False

    async def aiter_text(self):
        for chunk in self._chunks:
            yield chunk

    async def aread(self):
        return self._body

    async def aclose(self):
        self.closed = True


def _install_client(monkeypatch, response=None, error=None):
    calls = {}

    class Client:
        def __init__(self, *a, **kw):
            calls["init"] = kw
            calls["closed"] = False

        def build_request(self, method, url, json=None, headers=None):
            calls.update(method=method, url=url, json=json, headers=headers)
            return (method, url)

        async def send(self, request, stream=False):
            calls["stream"] = stream
            if error is not None:
                raise error
            return response

        async def aclose(self):
            calls["closed"] = True

    monkeypatch.setattr("httpx.AsyncClient", Client)
    return calls


def _request():
    req = ChatCompletionRequest(model="gpt-4", temperature=0.2)
    req.append("system", "be brief")
    req.append("user", "hi")
    return req


def test_create_provider_default(monkeypatch):
    monkeypatch.setattr("chat_core.providers.settings", SettingsStub())
    provider = create_provider()
    assert isinstance(provider, OpenAIClient)


def test_create_provider_explicit(monkeypatch):
    monkeypatch.setattr("chat_core.providers.settings", SettingsStub())
    provider = create_provider("anthropic")
    assert isinstance(provider, AnthropicClient)
    assert provider.variant == "anthropic"


def test_create_provider_unknown():
    with pytest.raises(ValidationError) as exc:
        create_provider("cohere", SettingsStub())
    assert exc.value.code == "UNKNOWN_PROVIDER"


@pytest.mark.asyncio
async def test_openai_stream_request(monkeypatch):
    response = FakeResponse(chunks=['data: {"choices": [{"delta": {"content": "a"}}]}\n\n', "data: [DONE]\n\n"])
    calls = _install_client(monkeypatch, response=response)
    handle = await OpenAIClient(SettingsStub()).open_stream(_request())

    assert calls["url"] == "https://api.openai.com/v1/chat/completions"
    assert calls["headers"]["Authorization"] == "Bearer sk-test-0123456789"
    assert calls["json"]["stream"] is True
    assert calls["json"]["temperature"] == 0.2
    assert calls["json"]["messages"][0] == {"role": "system", "content": "be brief"}
    assert calls["stream"] is True
    assert calls["init"]["trust_env"] is False

    text = [chunk async for chunk in handle.aiter_text()]
    assert text[-1] == "data: [DONE]\n\n"
    await handle.aclose()
    await handle.aclose()
    assert response.closed is True
    assert calls["closed"] is True


@pytest.mark.asyncio
async def test_anthropic_payload(monkeypatch):
    calls = _install_client(monkeypatch, response=FakeResponse())
    req = ChatCompletionRequest(model="claude-3-5-sonnet-latest", stop=["END"])
    req.append("system", "be brief")
    req.append("user", "first")
    req.append("user", "second")
    await AnthropicClient(SettingsStub()).open_stream(req)

    assert calls["url"] == "https://api.anthropic.com/v1/messages"
    assert calls["headers"]["x-api-key"] == "ak-test-0123456789"
    assert calls["headers"]["anthropic-version"] == "2023-06-01"
    payload = calls["json"]
    assert payload["system"] == "be brief"
    assert payload["messages"] == [{"role": "user", "content": "first\n\nsecond"}]
    assert payload["max_tokens"] == 1024
    assert payload["stop_sequences"] == ["END"]
    assert "temperature" not in payload


@pytest.mark.asyncio
async def test_missing_api_key(monkeypatch):
    class NoKey(SettingsStub):
        openai_api_key = None

    _install_client(monkeypatch, response=FakeResponse())
    with pytest.raises(ValidationError) as exc:
        await OpenAIClient(NoKey()).open_stream(_request())
    assert exc.value.code == "MISSING_API_KEY"


@pytest.mark.asyncio
async def test_connection_error(monkeypatch):
    calls = _install_client(monkeypatch, error=httpx.ConnectError("refused"))
    with pytest.raises(NetworkError):
        await OpenAIClient(SettingsStub()).open_stream(_request())
    assert calls["closed"] is True


@pytest.mark.asyncio
async def test_error_status_with_error_object(monkeypatch):
    body = b'{"error": {"message": "The model `gpt-9` does not exist", "type": "invalid_request_error", "code": "model_not_found"}}'
    _install_client(monkeypatch, response=FakeResponse(status_code=404, body=body))
    with pytest.raises(ModelError) as exc:
        await OpenAIClient(SettingsStub()).open_stream(_request())
    assert exc.value.code == "model_not_found"
    assert exc.value.http_status == 404


@pytest.mark.asyncio
async def test_rate_limit(monkeypatch):
    _install_client(monkeypatch, response=FakeResponse(status_code=429, body=b"slow down"))
    with pytest.raises(RateLimitError):
        await OpenAIClient(SettingsStub()).open_stream(_request())


@pytest.mark.asyncio
async def test_plain_error_status(monkeypatch):
    _install_client(monkeypatch, response=FakeResponse(status_code=500, body=b"Internal Server Error"))
    with pytest.raises(ApiError) as exc:
        await OpenAIClient(SettingsStub()).open_stream(_request())
    assert exc.value.http_status == 500
