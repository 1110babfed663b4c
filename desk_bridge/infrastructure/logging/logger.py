import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from desk_bridge.config.settings import settings


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if settings.log_redact_content:
            msg = (msg or "")[:64]
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(extra)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger() -> logging.Logger:
    logger = logging.getLogger("desk_bridge")
    logger.setLevel(getattr(logging, str(settings.log_level).upper(), logging.INFO))
    # 重复导入时不要叠加 handler
    if any(getattr(h, "_desk_bridge", False) for h in logger.handlers):
        return logger
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_dir / "desk_bridge.log", encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(JsonFormatter())
    fh._desk_bridge = True  # type: ignore[attr-defined]
    logger.addHandler(fh)
    return logger


logger = setup_logger()


def preview(text: str, limit: int = 200) -> str:
    """日志里展示的内容片段；开启脱敏时只保留长度信息。"""

    if settings.log_redact_content:
        return f"<{len(text)} chars>"
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
