"""Key/value structured logging with logfmt or JSON output."""

from __future__ import annotations

import json
import os
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Callable, TextIO


class Key(str):
    """The name of a field in a structured log line."""

    __slots__ = ()


FILENAME = Key("filename")
DELTA = Key("delta")
DIR = Key("directory")
STRUCT = Key("struct")
SHA1 = Key("sha1")
CONFIG = Key("config")
STAT_KEEPERS = Key("stat_keepers")
REMOTE_ADDR = Key("remote_addr")
CARBON_LINE = Key("carbon_line")
CAPACITY = Key("capacity")
TOTAL_PIPELINE = Key("total_pipeline")
PROTOCOL = Key("protocol")
DEBUG_ADDR = Key("debug_addr")
ENV = Key("env")
TIME = Key("time")
CALLER = Key("caller")
DIRECTION = Key("direction")
FORWARD_TO = Key("forward_to")
NAME = Key("name")
CONFIG_FILE = Key("config_file")
READ_LEN = Key("read_len")
CONTENT_LENGTH = Key("content_len")
METRIC_TYPE = Key("metric_type")
LISTEN_FROM = Key("listen_from")
WAVEFRONT_LINE = Key("wavefront_line")
ERR = Key("err")
MSG = Key("msg")

_LOG_FILE_NAME = "gateway.log"
_MEGABYTE = 1024 * 1024


def _logfmt_value(value: Any) -> str:
    text = str(value)
    if text == "" or any(ch in text for ch in ' ="\\') or any(ord(ch) < 32 for ch in text):
        return json.dumps(text)
    return text


def _json_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


class KVLogger:
    """Writes key/value pairs as one line per call.

    Arguments to :meth:`log` are alternating keys and values; an odd
    trailing argument is the message. Callable values bound with
    :meth:`with_context` are evaluated each time a line is written.
    """

    def __init__(
        self,
        out: TextIO,
        log_format: str = "logfmt",
        context: tuple[Any, ...] = (),
        *,
        _lock: threading.Lock | None = None,
    ) -> None:
        if log_format not in ("logfmt", "json"):
            raise ValueError(f"unknown log format {log_format!r}")
        self._out = out
        self._format = log_format
        self._context = tuple(context)
        self._lock = _lock or threading.Lock()

    def with_context(self, *args: Any) -> KVLogger:
        """Return a logger that prefixes every line with these pairs."""
        if len(args) % 2:
            raise ValueError("context needs key/value pairs")
        return KVLogger(
            self._out, self._format, self._context + args, _lock=self._lock
        )

    def _pairs(self, args: tuple[Any, ...]) -> list[tuple[str, Any]]:
        ctx = iter(self._context)
        pairs = [
            (str(k), v() if callable(v) else v) for k, v in zip(ctx, ctx)
        ]
        if len(args) % 2:
            *args, message = args
            tail = [(str(MSG), message)]
        else:
            tail = []
        it = iter(args)
        pairs.extend((str(k), v) for k, v in zip(it, it))
        pairs.extend(tail)
        return pairs

    def _render(self, pairs: list[tuple[str, Any]]) -> str:
        if self._format == "json":
            return json.dumps({k: _json_value(v) for k, v in pairs}) + "\n"
        return " ".join(f"{k}={_logfmt_value(v)}" for k, v in pairs) + "\n"

    def log(self, *args: Any) -> None:
        """Write one line made of the context and the given pairs."""
        line = self._render(self._pairs(args))
        with self._lock:
            try:
                self._out.write(line)
                flush = getattr(self._out, "flush", None)
                if flush is not None:
                    flush()
            except OSError as exc:
                sys.stderr.write(f"unable to write log line: {exc}\n")


class _RotatingFile:
    """A log file that rolls over to numbered backups when it grows too big."""

    def __init__(self, path: str, max_bytes: int, max_backups: int) -> None:
        self._path = path
        self._max_bytes = max_bytes
        self._max_backups = max_backups
        self._file: TextIO | None = None
        self._size = 0

    def _open(self) -> TextIO:
        if self._file is None:
            directory = os.path.dirname(self._path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            self._file = open(self._path, "a", encoding="utf-8")
            self._size = os.path.getsize(self._path)
        return self._file

    def _backup(self, number: int) -> str:
        return f"{self._path}.{number}"

    def _rotate(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
        highest = 0
        while os.path.exists(self._backup(highest + 1)):
            highest += 1
        for number in range(highest, 0, -1):
            os.replace(self._backup(number), self._backup(number + 1))
        os.replace(self._path, self._backup(1))
        if self._max_backups > 0:
            for number in range(self._max_backups + 1, highest + 2):
                if os.path.exists(self._backup(number)):
                    os.remove(self._backup(number))
        self._size = 0

    def write(self, text: str) -> None:
        data_len = len(text.encode("utf-8"))
        self._open()
        if self._size > 0 and self._size + data_len > self._max_bytes:
            self._rotate()
        handle = self._open()
        handle.write(text)
        self._size += data_len

    def flush(self) -> None:
        if self._file is not None:
            self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def make_logger(
    log_dir: str,
    max_size_mb: int,
    max_backups: int,
    log_format: str,
    stdout: TextIO,
) -> KVLogger:
    """Build the gateway logger.

    A log_dir of "-" sends output to stdout; otherwise lines go to a
    size-rotated ``gateway.log`` in that directory. A log_format of
    "json" selects JSON lines, anything else logfmt.
    """
    if log_dir == "-":
        out: Any = stdout
    else:
        out = _RotatingFile(
            os.path.join(log_dir, _LOG_FILE_NAME),
            max(1, max_size_mb) * _MEGABYTE,
            max_backups,
        )
    fmt = "json" if log_format == "json" else "logfmt"
    logger = KVLogger(out, fmt).with_context(TIME, _timestamp)
    if log_dir != "-":
        logger.log(FILENAME, out._path, DIR, log_dir, "Logging redirect setup")
    return logger


__all__ = ["Key", "KVLogger", "make_logger"]

_: Callable[..., Any] = _timestamp