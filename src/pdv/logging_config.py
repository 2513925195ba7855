from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

# per-concern files on top of app.log / errors.log
DOMAIN_LOGS = {
    "pdv.sales": "sales.log",
    "pdv.catalog": "catalog.log",
    "pdv.cart": "cart.log",
}

_MARKER = "_pdv_handler"


def split_event(message: str) -> tuple[str, dict[str, str]]:
    """Split ``"sale_finalized order_id=1 total=9.90"`` into the event name and its fields.

    A value runs until the next ``key=`` token, so ``error=catalog down`` keeps
    its spaces. Text before the first pair is the event.
    """
    words: list[str] = []
    fields: dict[str, str] = {}
    current = None
    for token in message.split(" "):
        key, sep, value = token.partition("=")
        if sep and key.isidentifier():
            fields[key] = value
            current = key
        elif current is not None:
            fields[current] += " " + token
        else:
            words.append(token)
    return " ".join(words), fields


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        event, fields = split_event(record.getMessage())
        payload = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "event": event,
        }
        if fields:
            payload["fields"] = fields
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _handler(path: Path, level: int) -> RotatingFileHandler:
    fh = RotatingFileHandler(path, maxBytes=2_000_000, backupCount=5, encoding="utf-8")
    fh.setFormatter(JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    fh.setLevel(level)
    setattr(fh, _MARKER, True)
    return fh


def _installed(logger: logging.Logger) -> bool:
    return any(getattr(h, _MARKER, False) for h in logger.handlers)


def setup_logging(logs_dir: Path, level: int = logging.INFO) -> None:
    """Install the JSON file handlers once; handlers owned by a host (e.g. a test runner) are left alone."""
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    if _installed(root):
        return

    root.addHandler(_handler(logs_dir / "app.log", logging.INFO))
    root.addHandler(_handler(logs_dir / "errors.log", logging.ERROR))

    for name, filename in DOMAIN_LOGS.items():
        logger = logging.getLogger(name)
        logger.addHandler(_handler(logs_dir / filename, logging.INFO))
        logger.setLevel(logging.INFO)


def teardown_logging() -> None:
    """Close and detach every handler installed by ``setup_logging``."""
    for logger in [logging.getLogger()] + [logging.getLogger(name) for name in DOMAIN_LOGS]:
        for handler in [h for h in logger.handlers if getattr(h, _MARKER, False)]:
            logger.removeHandler(handler)
            handler.close()
