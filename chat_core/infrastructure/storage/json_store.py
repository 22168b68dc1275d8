import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import ConversationStore, HistoryEntry
from chat_core.domain.exceptions import BusinessError
from chat_core.domain.models import ChatCompletionRequest, Message
from chat_core.infrastructure.logging.logger import logger


SNIPPET_MAX_LENGTH = 50
SNIPPET_MESSAGES = 5


def merge_messages(saved: List[Message], current: List[Message]) -> List[Message]:
    """合并已落盘消息与内存中的消息。

    取 saved 的后缀与 current 的前缀的最长重叠部分，只追加重叠之后的新消息。
    继续对话时 current 以 saved 开头，结果即 current；两者毫无重叠时直接拼接。
    """

    for k in range(min(len(saved), len(current)), 0, -1):
        if saved[len(saved) - k:] == current[:k]:
            return list(saved) + list(current[k:])
    return list(saved) + list(current)


class JsonConversationStore(ConversationStore):
    """基于 JSON 文件的会话历史存储。

    目录结构::

        <root>/meta.json                 最近一次会话名称
        <root>/history/<name>.json       ChatCompletionRequest
        <root>/history-snippets.json     历史列表摘要缓存
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_path).expanduser().resolve()
        self._history_root = self._root / "history"
        self._history_root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def new_turn_label(self) -> str:
        return datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

    def save(self, request: ChatCompletionRequest, name: str, *, merge: bool = True) -> ChatCompletionRequest:
        path = self._chat_path(name)
        to_write = ChatCompletionRequest.from_dict(request.to_dict())
        if merge and path.exists():
            saved = self._read_chat(path)
            to_write.messages = merge_messages(saved.messages, to_write.messages)
        self._write_json(path, to_write.to_dict())
        meta = self._read_meta()
        meta["latest_name"] = name
        meta["updated_at"] = _utcnow()
        self._write_json(self._root / "meta.json", meta)
        self._drop_snippet(name)
        logger.info(
            "Saved conversation",
            extra={"extra": {"name": name, "message_count": len(to_write.messages), "merge": merge}},
        )
        return to_write

    def load(self, name: str) -> Optional[ChatCompletionRequest]:
        path = self._chat_path(name)
        if not path.exists():
            return None
        return self._read_chat(path)

    def load_latest(self) -> Optional[ChatCompletionRequest]:
        name = self.latest_name()
        if not name:
            return None
        return self.load(name)

    def latest_name(self) -> Optional[str]:
        return self._read_meta().get("latest_name")

    def list_history(self) -> List[HistoryEntry]:
        entries: List[HistoryEntry] = []
        for path in self._history_root.glob("*.json"):
            stat = path.stat()
            entries.append(
                HistoryEntry(
                    name=path.stem,
                    updated_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
        entries.sort(key=lambda e: e.updated_at, reverse=True)

        snippets_path = self._root / "history-snippets.json"
        snippets = self._read_json(snippets_path, default={})
        generated = False
        for entry in entries:
            if entry.name in snippets:
                entry.snippet = snippets[entry.name]
                continue
            try:
                chat = self.load(entry.name)
            except BusinessError:
                continue
            if chat is None:
                continue
            entry.snippet = _snippet(chat)
            snippets[entry.name] = entry.snippet
            generated = True
        if generated:
            self._write_json(snippets_path, snippets)
        return entries

    def _chat_path(self, name: str) -> Path:
        if not name or "/" in name or "\\" in name or name.startswith("."):
            raise BusinessError(code="STORE_INVALID_NAME", message=f"Invalid conversation name: {name!r}")
        return self._history_root / f"{name}.json"

    def _read_chat(self, path: Path) -> ChatCompletionRequest:
        data = self._read_json(path)
        try:
            return ChatCompletionRequest.from_dict(data)
        except (AttributeError, TypeError, ValueError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=f"{path.name}: {e}")

    def _read_meta(self) -> Dict[str, Any]:
        meta = self._read_json(self._root / "meta.json", default={})
        return meta if isinstance(meta, dict) else {}

    def _drop_snippet(self, name: str) -> None:
        snippets_path = self._root / "history-snippets.json"
        snippets = self._read_json(snippets_path, default={})
        if name in snippets:
            del snippets[name]
            self._write_json(snippets_path, snippets)

    @staticmethod
    def _read_json(path: Path, default: Any = None) -> Any:
        if not path.exists() and default is not None:
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            if default is not None:
                logger.warning("Ignoring unreadable file", extra={"extra": {"path": str(path), "error": str(e)}})
                return default
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))

    @staticmethod
    def _write_json(path: Path, obj: Any) -> None:
        tmp_path = path.parent / f"{path.stem}.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))


def _snippet(chat: ChatCompletionRequest) -> str:
    parts = [m.content for m in chat.messages if m.role != "system"][:SNIPPET_MESSAGES]
    full_text = " ".join(parts).replace("\n", " ")
    if len(full_text) > SNIPPET_MAX_LENGTH:
        return f"{full_text[:SNIPPET_MAX_LENGTH]}..."
    return full_text


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
