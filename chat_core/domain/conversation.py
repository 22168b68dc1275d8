from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol

from .models import ChatCompletionRequest


@dataclass
class HistoryEntry:
    name: str
    updated_at: datetime
    snippet: Optional[str] = None


class ConversationStore(Protocol):
    def save(self, request: ChatCompletionRequest, name: str, *, merge: bool = True) -> ChatCompletionRequest:
        ...

    def load(self, name: str) -> Optional[ChatCompletionRequest]:
        ...

    def load_latest(self) -> Optional[ChatCompletionRequest]:
        ...

    def latest_name(self) -> Optional[str]:
        ...

    def list_history(self) -> List[HistoryEntry]:
        ...

    def new_turn_label(self) -> str:
        ...
