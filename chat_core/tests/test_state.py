import pytest

from chat_core.domain.exceptions import InvalidTransitionError
from chat_core.domain.models import StreamState
from chat_core.streaming.state import TurnState


def test_full_cycle_and_reset():
    state = TurnState()
    assert state.is_(StreamState.AWAITING)
    state.advance(StreamState.NETWORK_DONE)
    state.advance(StreamState.PACING_DONE)
    state.advance(StreamState.PRINTED)
    assert state.state is StreamState.PRINTED
    state.reset()
    assert state.is_(StreamState.AWAITING)


def test_skipping_a_step_is_rejected():
    state = TurnState()
    with pytest.raises(InvalidTransitionError):
        state.advance(StreamState.PACING_DONE)
    assert state.is_(StreamState.AWAITING)


def test_printed_is_terminal_until_reset():
    state = TurnState()
    for s in (StreamState.NETWORK_DONE, StreamState.PACING_DONE, StreamState.PRINTED):
        state.advance(s)
    with pytest.raises(InvalidTransitionError):
        state.advance(StreamState.NETWORK_DONE)
