"""REPL 的原始模式输入读取。

整个进程只持有一个 RawInputReader。每次 read_line 都在 raw_mode() 作用域内
进行：进入前保存终端属性并切到 cbreak 模式，退出时（包括异常路径）恢复，
避免终端停留在原始模式。

提交规则：收到换行后，如果在 idle_timeout 秒内没有新的字节到达，则视为提交；
窗口内有新字节（例如粘贴了多行文本）则换行作为内容的一部分继续读取。
"""

import codecs
import os
import select
import sys
from contextlib import contextmanager
from typing import Iterator, List, Optional, TextIO

from chat_core.infrastructure.logging.logger import logger


BACKSPACE_KEYS = ("\x7f", "\x08")
CTRL_C = "\x03"
CTRL_D = "\x04"
DEFAULT_IDLE_TIMEOUT = 0.25


class RawInputReader:
    def __init__(
        self,
        stream: Optional[TextIO] = None,
        echo: Optional[TextIO] = None,
        *,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
    ):
        self._stream = stream or sys.stdin
        self._echo = echo or sys.stdout
        self.idle_timeout = idle_timeout
        self._fd = self._stream.fileno()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._raw_active = False

    @property
    def is_tty(self) -> bool:
        return os.isatty(self._fd)

    @property
    def raw_active(self) -> bool:
        return self._raw_active

    @contextmanager
    def raw_mode(self) -> Iterator[None]:
        """cbreak 模式作用域；非终端输入时不做任何修改。"""

        if not self.is_tty:
            yield
            return
        import termios
        import tty

        old_settings = termios.tcgetattr(self._fd)
        try:
            tty.setcbreak(self._fd)
            new_settings = termios.tcgetattr(self._fd)
            # 回显由 read_line 自己处理
            new_settings[3] &= ~termios.ECHO
            termios.tcsetattr(self._fd, termios.TCSADRAIN, new_settings)
            self._raw_active = True
            yield
        finally:
            self._raw_active = False
            termios.tcsetattr(self._fd, termios.TCSADRAIN, old_settings)

    def read_line(self, prompt: str = "") -> str:
        """读取一条输入；EOF 或空行上的 Ctrl-D 返回空字符串。"""

        if prompt:
            self._write(prompt)
        with self.raw_mode():
            text = self._read_chars()
        self._write("\n")
        logger.debug("Read REPL input", extra={"extra": {"chars": len(text)}})
        return text.rstrip("\r\n")

    def _read_chars(self) -> str:
        chars: List[str] = []
        newline_pending = False
        while True:
            timeout = self.idle_timeout if newline_pending else None
            ready, _, _ = select.select([self._fd], [], [], timeout)
            if not ready:
                # 换行后空闲超时：提交
                return "".join(chars)
            data = os.read(self._fd, 1024)
            if not data:
                return "".join(chars)
            for ch in self._decoder.decode(data):
                if ch == CTRL_C:
                    raise KeyboardInterrupt
                if ch == CTRL_D:
                    if not chars:
                        return ""
                    continue
                if ch in BACKSPACE_KEYS:
                    if chars:
                        removed = chars.pop()
                        if removed not in ("\n", "\r"):
                            self._write("\b \b")
                    newline_pending = bool(chars) and chars[-1] == "\n"
                    continue
                if ch == "\r":
                    ch = "\n"
                chars.append(ch)
                self._write(ch)
                newline_pending = ch == "\n"

    def _write(self, text: str) -> None:
        self._echo.write(text)
        self._echo.flush()
