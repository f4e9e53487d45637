import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from llm_core.config.settings import Settings, settings


class JsonFormatter(logging.Formatter):
    def __init__(self, redact: bool = False):
        super().__init__()
        self._redact = redact

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if self._redact:
            msg = (msg or "")[:64]
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(extra)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger(cfg: Settings = settings) -> logging.Logger:
    logger = logging.getLogger("llm_core")
    logger.setLevel(cfg.log_level)
    if logger.handlers:
        return logger
    formatter = JsonFormatter(redact=cfg.log_redact_content)
    if cfg.log_to_file:
        log_dir = Path(cfg.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_dir / "llm_core.log", encoding="utf-8")
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    return logger


def get_logger(name: str) -> logging.Logger:
    """返回 llm_core 下的子 logger，例如 llm_core.providers.transport。"""

    if not name.startswith("llm_core"):
        name = f"llm_core.{name}"
    return logging.getLogger(name)


def log_event(log: logging.Logger, level: int, message: str, **fields: Any) -> None:
    """以结构化字段记录一条日志，字段会被 JsonFormatter 合并进 JSON。"""

    payload: Dict[str, Any] = {k: v for k, v in fields.items() if v is not None}
    log.log(level, message, extra={"extra": payload})


logger = setup_logger()
