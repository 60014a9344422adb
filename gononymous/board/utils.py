"""Identifiers, JSON replies and logging shared by the board."""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from werkzeug.wrappers import Response

JSON_TYPE = "application/json"
DEFAULT_LOG_PATH = "app.log"

_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}

_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}


def _indented_json(payload: Mapping[str, Any]) -> str:
    text = json.dumps(payload, indent="\t", ensure_ascii=False)
    return "".join(_JSON_ESCAPES.get(char, char) for char in text)


def new_uuid() -> str:
    """Return a random identifier of the form XXXXXXXX-XXXX-XXXX-XXXX-XXXXXXXXXXXX."""
    digits = os.urandom(16).hex().upper()
    return f"{digits[:8]}-{digits[8:12]}-{digits[12:16]}-{digits[16:20]}-{digits[20:]}"


def _text_value(value: object) -> str:
    text = str(value)
    if text == "" or any(c.isspace() or c in '="' or not c.isprintable() for c in text):
        return json.dumps(text, ensure_ascii=False)
    return text


class _TextFormatter(logging.Formatter):
    """Render records as key=value lines: time, level, msg, then any extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).astimezone().isoformat(
            timespec="milliseconds"
        )
        parts = [
            f"time={stamp}",
            f"level={_LEVEL_NAMES.get(record.levelno, record.levelname)}",
            f"msg={_text_value(record.getMessage())}",
        ]
        fields = getattr(record, "fields", None) or {}
        parts.extend(f"{key}={_text_value(value)}" for key, value in fields.items())
        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def make_logger(path=DEFAULT_LOG_PATH) -> logging.Logger:
    """Return a logger writing key=value lines to a file (appended) and to stdout.

    Extra key/value pairs go in ``extra={"fields": {...}}``.
    Raises OSError when the log file cannot be opened.
    """
    location = os.path.abspath(os.fspath(path))
    file_handler = logging.FileHandler(location, mode="a", encoding="utf-8")
    stream_handler = logging.StreamHandler(sys.stdout)
    formatter = _TextFormatter()
    file_handler.setFormatter(formatter)
    stream_handler.setFormatter(formatter)

    logger = logging.getLogger(f"gononymous.board.log:{location}")
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger


@dataclass
class APIResponse:
    """A JSON reply carrying a status code and a message."""

    code: int
    message: str

    def to_json(self) -> str:
        """Return the reply as tab-indented JSON."""
        return _indented_json({"code": self.code, "message": self.message})

    def send(self) -> Response:
        """Return an HTTP response with the JSON body and the reply's status."""
        return Response(self.to_json(), status=self.code, content_type=JSON_TYPE)


@dataclass
class APIError:
    """A JSON error reply naming the resource that failed."""

    code: int
    message: str
    resource: str = ""

    def to_json(self) -> str:
        """Return the error as tab-indented JSON."""
        return _indented_json(
            {"code": self.code, "message": self.message, "resource": self.resource}
        )

    def send(self) -> Response:
        """Return an HTTP response with the JSON body and the error's status."""
        return Response(self.to_json(), status=self.code, content_type=JSON_TYPE)