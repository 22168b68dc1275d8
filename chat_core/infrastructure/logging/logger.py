import json
import logging
from datetime import datetime, timezone

from chat_core.config.settings import settings


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if settings.log_redact_content:
            msg = (msg or "")[:64]
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            if settings.log_redact_content:
                extra = {k: (v[:64] if isinstance(v, str) else v) for k, v in extra.items()}
            payload.update(extra)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger() -> logging.Logger:
    logger = logging.getLogger("chat_core")
    logger.setLevel(logging.DEBUG if settings.debug else logging.INFO)
    if logger.handlers:
        return logger
    log_dir = settings.log_path
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        fh: logging.Handler = logging.FileHandler(log_dir / "chat.log", encoding="utf-8")
    except OSError:
        # 日志目录不可写时不影响终端输出
        fh = logging.NullHandler()
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(JsonFormatter())
    logger.addHandler(fh)
    logger.propagate = False
    return logger


def set_debug(enabled: bool) -> None:
    """运行期切换调试日志（--debug）。"""

    logger.setLevel(logging.DEBUG if enabled else logging.INFO)


logger = setup_logger()
