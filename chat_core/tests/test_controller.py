import io
import tempfile
from pathlib import Path

import pytest

from chat_core.agents.session_controller import SessionController
from chat_core.domain.exceptions import FrameParseError, ModelError
from chat_core.domain.models import ChatCompletionRequest, ChatConfig, StreamState
from chat_core.infrastructure.storage.json_store import JsonConversationStore


class FakeHandle:
    def __init__(self, chunks):
        self._chunks = list(chunks)
        self.closed = False

    async def aiter_text(self):
        for chunk in self._chunks:
            yield chunk

    async def aclose(self):
        self.closed = True


class FakeProvider:
    name = "fake"
    variant = "openai"

    def __init__(self, *responses, open_error=None):
        self._responses = list(responses)
        self._open_error = open_error
        self.handles = []
        self.seen = []

    async def open_stream(self, req):
        # 记录发送时的消息快照
        self.seen.append([m.content for m in req.messages])
        if self._open_error is not None:
            raise self._open_error
        handle = FakeHandle(self._responses.pop(0))
        self.handles.append(handle)
        return handle


class FakeReader:
    def __init__(self, lines):
        self._lines = list(lines)

    def read_line(self, prompt=""):
        return self._lines.pop(0) if self._lines else ""


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def _frames(*contents):
    text = "".join('data: {"choices": [{"delta": {"content": "%s"}}]}\n\n' % c for c in contents)
    return [text + "data: [DONE]\n\n"]


def _request():
    req = ChatCompletionRequest(model="gpt-4")
    req.append("user", "hi")
    return req


def _config(**kw):
    kw.setdefault("wpm", 0)
    return ChatConfig(provider="fake", model="gpt-4", **kw)


@pytest.mark.asyncio
async def test_turn_prints_and_persists():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d))
        out = io.StringIO()
        provider = FakeProvider(_frames("Hel", "lo"))
        controller = SessionController(provider, store, _config(), writer=out, err_stream=io.StringIO(),
                                       turn_label="chat")
        req = _request()
        outcome = await controller.run_turn(req)

        assert out.getvalue() == "Hello\n"
        assert outcome.text == "Hello"
        assert outcome.error is None
        assert controller.state.is_(StreamState.PRINTED)
        assert [(m.role, m.content) for m in req.messages] == [("user", "hi"), ("assistant", "Hello")]
        saved = store.load("chat")
        assert [m.content for m in saved.messages] == ["hi", "Hello"]
        assert provider.handles[0].closed is True


@pytest.mark.asyncio
async def test_paced_turn_sleeps_per_character():
    with tempfile.TemporaryDirectory() as d:
        sleep = RecordingSleep()
        out = io.StringIO()
        controller = SessionController(
            FakeProvider(_frames("abc")),
            JsonConversationStore(root=Path(d)),
            _config(wpm=600, avg_chars_per_word=5),
            writer=out,
            err_stream=io.StringIO(),
            turn_label="chat",
            sleep=sleep,
        )
        await controller.run_turn(_request())
        assert out.getvalue() == "abc\n"
        assert sleep.calls == [pytest.approx(0.02)] * 3


@pytest.mark.asyncio
async def test_malformed_frame_reports_and_persists_marker():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d))
        out = io.StringIO()
        err = io.StringIO()
        provider = FakeProvider(['data: {"choices": [{"delta": {"content": "ok"}}]}\n\ndata: {bad\n\n'])
        controller = SessionController(provider, store, _config(), writer=out, err_stream=err, turn_label="chat")
        outcome = await controller.run_turn(_request())

        assert out.getvalue() == "ok[error]\n"
        assert isinstance(outcome.error, FrameParseError)
        assert controller.last_error is outcome.error
        assert "Failed to parse message" in err.getvalue()
        assert "{bad" in err.getvalue()
        assert store.load("chat").messages[-1].content == "ok[error]"


@pytest.mark.asyncio
async def test_open_error_is_reported_and_not_persisted():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d))
        err = io.StringIO()
        error = ModelError(code="model_not_found", message="The model `gpt-9` does not exist")
        controller = SessionController(
            FakeProvider(open_error=error), store, _config(),
            writer=io.StringIO(), err_stream=err, turn_label="chat",
        )
        with pytest.raises(ModelError):
            await controller.run_turn(_request())

        assert "model_not_found" in err.getvalue()
        assert "--model" in err.getvalue()
        assert store.load("chat") is None


@pytest.mark.asyncio
async def test_repl_runs_until_empty_line():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d))
        out = io.StringIO()
        provider = FakeProvider(_frames("one"), _frames("two"))
        controller = SessionController(
            provider, store, _config(repl=True),
            writer=out, err_stream=io.StringIO(),
            input_reader=FakeReader(["again"]), turn_label="chat",
        )
        req = await controller.run(_request())

        assert controller.turns == 2
        assert provider.seen == [["hi"], ["hi", "one", "again"]]
        assert [m.content for m in req.messages] == ["hi", "one", "again", "two"]
        assert [m.content for m in store.load("chat").messages] == ["hi", "one", "again", "two"]
        assert out.getvalue() == "one\ntwo\n"


@pytest.mark.asyncio
async def test_prompt_first_without_input_does_nothing():
    with tempfile.TemporaryDirectory() as d:
        provider = FakeProvider()
        controller = SessionController(
            provider, JsonConversationStore(root=Path(d)), _config(repl=True),
            writer=io.StringIO(), err_stream=io.StringIO(),
            input_reader=FakeReader([]), turn_label="chat",
        )
        await controller.run(ChatCompletionRequest(model="gpt-4"), prompt_first=True)
        assert provider.seen == []
        assert controller.turns == 0
