"""`gpt` 命令行入口。

    gpt "What is the capital of France?"
    gpt -c "Tell me more about Paris."
    cat notes.txt | gpt - "Summarize this."
    gpt -i                       # REPL

参数解析、会话历史的编辑/回放命令都在这里完成，
真正的流式对话交给 SessionController。
"""

import argparse
import asyncio
import sys
from typing import List, Optional, TextIO

from chat_core.agents.session_controller import SessionController
from chat_core.config.settings import settings
from chat_core.domain.exceptions import BusinessError
from chat_core.domain.models import ChatCompletionRequest, ChatConfig
from chat_core.infrastructure.logging.logger import logger, set_debug
from chat_core.infrastructure.storage.json_store import JsonConversationStore
from chat_core.providers import create_provider
from chat_core.providers.registry import get_provider_config
from chat_core.streaming.output import TerminalWriter
from chat_core.terminal.input_reader import RawInputReader


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gpt",
        description="Stream chat completions to the terminal and keep the conversation history.",
    )
    parser.add_argument(
        "message", nargs="*",
        help="Message to send; '-' as first or last word also reads stdin",
    )
    parser.add_argument(
        "-c", "--continue", "--cont", dest="cont", action="store_true",
        help="Continue the last conversation",
    )
    parser.add_argument("-n", "--name", default=None, help="Select a conversation from history to use")
    parser.add_argument(
        "-r", "--retry", action="store_true",
        help="Re-generate the last assistant message",
    )
    parser.add_argument(
        "-w", "--rewrite", "--rw", action="store_true",
        help="Reword the last user message",
    )
    parser.add_argument("--pop", action="store_true", help="Remove the last message in the conversation")
    parser.add_argument(
        "-s", "--slice", dest="slice_", action="store_true",
        help="Remove the first message in the conversation",
    )
    parser.add_argument("-p", "--print", dest="print_", action="store_true", help="Print the last message")
    parser.add_argument("-d", "--dump", action="store_true", help="Dump the entire conversation")
    parser.add_argument("-H", "--history", action="store_true", help="List chat history")
    parser.add_argument("--sys", "--system", dest="system", default=None, help="Set a system prompt/context")
    parser.add_argument("-t", "--temp", "--temperature", dest="temperature", type=float, default=None,
                        help="Set the creativity temperature")
    parser.add_argument("--max", "--max-tokens", dest="max_tokens", type=int, default=None,
                        help="Set the maximum number of tokens")
    parser.add_argument("--wpm", type=int, default=None,
                        help="Words per minute of the typing output (<=0 disables pacing)")
    parser.add_argument("-m", "--model", default=None, help="Manually use a different model")
    parser.add_argument("-f", "--fast", action="store_true", help="Use the configured fast model")
    parser.add_argument("--provider", default=None, choices=["openai", "anthropic"],
                        help="Provider to use (default from config)")
    parser.add_argument("-i", "--repl", action="store_true", help="Keep prompting for messages after each reply")
    parser.add_argument("--debug", action="store_true", help="Write request/response debug logs")
    return parser


def _read_stdin(stream: TextIO) -> str:
    return stream.read()


def _dump(request: ChatCompletionRequest, out: TextIO) -> None:
    for message in request.messages:
        if message.role == "user":
            out.write("---\n\n")
            out.write(f"{message.content}\n\n")
            out.write("---\n\n")
        else:
            out.write(f"{message.content}\n\n")


def _select_model(args: argparse.Namespace, cfg, loaded: Optional[ChatCompletionRequest]) -> str:
    if args.fast:
        return cfg.fast_model
    if args.model:
        return args.model
    if loaded is not None and loaded.model:
        return loaded.model
    if args.provider and args.provider != getattr(cfg, "default_provider", "openai"):
        # 临时切换 Provider 时默认模型跟随 Provider
        return get_provider_config(args.provider).default_model
    return cfg.default_model


def run(argv: Optional[List[str]] = None, *, cfg=None, stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None, stderr: Optional[TextIO] = None, store=None, provider=None) -> int:
    """执行一次命令，返回进程退出码。"""

    cfg = cfg or settings
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr
    args = build_parser().parse_args(argv)
    if args.debug or getattr(cfg, "debug", False):
        set_debug(True)

    words = list(args.message)
    read_stdin = bool(words) and (words[0] == "-" or words[-1] == "-")
    if read_stdin:
        words = [w for i, w in enumerate(words) if not (w == "-" and i in (0, len(words) - 1))]
    message_text = " ".join(words)

    store = store or JsonConversationStore(root=cfg.storage_path)

    if args.history:
        for entry in store.list_history():
            if entry.snippet:
                stdout.write(f"{entry.name}\t\t{entry.snippet}\n")
            else:
                stdout.write(f"{entry.name}\n")
        return 0

    editing = args.pop or args.slice_ or args.retry or args.rewrite or args.print_ or args.dump
    cont = bool(editing or args.cont)
    loaded: Optional[ChatCompletionRequest] = None
    try:
        if args.name:
            loaded = store.load(args.name)
        elif cont:
            loaded = store.load_latest()
    except BusinessError as e:
        stderr.write(f"[error] {e.message}\n")
        return 1
    label = args.name or (store.latest_name() if cont else None) or store.new_turn_label()

    request = loaded or ChatCompletionRequest(model=_select_model(args, cfg, None))

    if args.pop:
        if request.messages:
            last = request.messages.pop()
            stdout.write(f"(Removing last message from {last.role})\n")
            store.save(request, label, merge=False)
        else:
            stdout.write("(Found no messages)\n")
        return 0

    if args.slice_:
        if len(request.messages) > 1:
            stdout.write("(Removing first message)\n")
            request.messages = request.messages[1:]
            store.save(request, label, merge=False)
        else:
            stdout.write("(Found no messages)\n")
        return 0

    if read_stdin:
        message_text = (message_text + "\n" + _read_stdin(stdin)) if message_text else _read_stdin(stdin)

    if args.print_:
        if request.messages:
            stdout.write(request.messages[-1].content + "\n")
        else:
            stdout.write("(Found no messages)\n")
        return 0

    if args.dump:
        _dump(request, stdout)
        return 0

    system = args.system or (cfg.system_prompt if loaded is None else None)
    if system:
        # 新会话或显式指定时添加 system prompt
        request.append("system", system)

    if args.temperature is not None:
        request.temperature = args.temperature
    if args.max_tokens is not None:
        request.max_tokens = args.max_tokens
    request.model = _select_model(args, cfg, loaded)

    if args.retry and request.messages and request.messages[-1].role == "assistant":
        request.messages.pop()
    if args.rewrite:
        for _ in range(2):
            if request.messages:
                request.messages.pop()

    empty = not message_text.strip()
    if empty and not args.retry and not args.repl:
        stdout.write("(No message passed)\n")
        return 0
    if not args.retry and not empty:
        request.append("user", message_text)

    provider_name = args.provider or getattr(cfg, "default_provider", "openai")
    config = ChatConfig(
        provider=provider_name,
        model=request.model,
        wpm=args.wpm if args.wpm is not None else cfg.wpm,
        avg_chars_per_word=cfg.avg_chars_per_word,
        repl=args.repl,
        idle_submit_timeout=cfg.idle_submit_timeout,
        max_idle_reads=cfg.max_idle_reads,
        output_queue_size=cfg.output_queue_size,
    )
    input_reader = None
    if args.repl and not read_stdin:
        input_reader = RawInputReader(stdin, stdout, idle_timeout=config.idle_submit_timeout)

    try:
        provider = provider or create_provider(provider_name, cfg)
    except BusinessError as e:
        logger.error("Cannot create provider", extra={"extra": {"code": e.code, "error": e.message}})
        stderr.write(f"[error] {e.message}\n")
        return 1

    try:
        controller = SessionController(
            provider,
            store,
            config,
            writer=TerminalWriter(stdout),
            err_stream=stderr,
            input_reader=input_reader,
            turn_label=label,
            merge=not (args.retry or args.rewrite),
        )
        asyncio.run(controller.run(request, prompt_first=empty and not args.retry))
    except BusinessError as e:
        # 控制器已经向 stderr 报告过
        logger.error("Command failed", extra={"extra": {"code": e.code, "error": e.message}})
        return 1
    except KeyboardInterrupt:
        stdout.write("\n")
        return 130
    return 1 if controller.last_error is not None else 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
