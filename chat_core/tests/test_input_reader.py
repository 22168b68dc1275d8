import io
import os

import pytest

from chat_core.terminal.input_reader import RawInputReader


@pytest.fixture
def pipe_reader():
    r, w = os.pipe()
    stream = os.fdopen(r, "r")
    echo = io.StringIO()
    reader = RawInputReader(stream, echo, idle_timeout=0.02)
    yield reader, w, echo
    stream.close()
    try:
        os.close(w)
    except OSError:
        pass


def test_newline_followed_by_idle_submits(pipe_reader):
    reader, w, echo = pipe_reader
    os.write(w, b"hello\n")
    assert reader.read_line("> ") == "hello"
    assert echo.getvalue().startswith("> hello")
    assert reader.is_tty is False
    assert reader.raw_active is False


def test_pasted_lines_are_one_message(pipe_reader):
    reader, w, _ = pipe_reader
    os.write(w, b"line one\nline two\n")
    assert reader.read_line() == "line one\nline two"


def test_backspace_removes_last_char(pipe_reader):
    reader, w, echo = pipe_reader
    os.write(w, b"helx\x7flo\n")
    assert reader.read_line() == "hello"
    assert "\b \b" in echo.getvalue()


def test_utf8_input(pipe_reader):
    reader, w, _ = pipe_reader
    os.write(w, "café ✓\n".encode("utf-8"))
    assert reader.read_line() == "café ✓"


def test_ctrl_d_on_empty_line(pipe_reader):
    reader, w, _ = pipe_reader
    os.write(w, b"\x04")
    assert reader.read_line() == ""


def test_eof_returns_what_was_typed(pipe_reader):
    reader, w, _ = pipe_reader
    os.write(w, b"partial")
    os.close(w)
    assert reader.read_line() == "partial"


def test_ctrl_c_interrupts(pipe_reader):
    reader, w, _ = pipe_reader
    os.write(w, b"abc\x03")
    with pytest.raises(KeyboardInterrupt):
        reader.read_line()
