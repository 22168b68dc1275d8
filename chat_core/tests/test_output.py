import asyncio
import io

import pytest

from chat_core.domain.models import StreamState
from chat_core.streaming.output import OutputPump, TerminalWriter
from chat_core.streaming.state import TurnState


def _pacing_done_state():
    state = TurnState()
    state.advance(StreamState.NETWORK_DONE)
    state.advance(StreamState.PACING_DONE)
    return state


@pytest.mark.asyncio
async def test_writes_pieces_and_flushes_once():
    outbox = asyncio.Queue()
    buf = io.StringIO()
    state = _pacing_done_state()
    calls = []

    async def on_complete():
        calls.append(buf.getvalue())

    pump = OutputPump(outbox, state, TerminalWriter(buf), on_complete)
    for piece in ("Hel", "lo", None):
        outbox.put_nowait(piece)
    await pump.run()

    assert buf.getvalue() == "Hello"
    assert calls == ["Hello"]
    assert pump.flushed is True
    assert state.is_(StreamState.PRINTED)

    # 迟到的空结果不会再次触发 flush
    await pump.complete()
    assert calls == ["Hello"]


@pytest.mark.asyncio
async def test_empty_result_before_pacing_done_does_not_flush():
    outbox = asyncio.Queue()
    state = TurnState()
    state.advance(StreamState.NETWORK_DONE)
    calls = []

    async def on_complete():
        calls.append(True)

    pump = OutputPump(outbox, state, TerminalWriter(io.StringIO()), on_complete)
    outbox.put_nowait(None)
    task = asyncio.ensure_future(pump.run())
    await asyncio.sleep(0)
    assert calls == []
    assert not pump.flushed

    state.advance(StreamState.PACING_DONE)
    outbox.put_nowait(None)
    await task
    assert calls == [True]
