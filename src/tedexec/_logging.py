"""Diagnostic logging setup for tedexec.

Diagnostic logs are separate from the build log that a run streams to its
caller: they carry ``key=value`` lifecycle events for whoever operates the
agent, while the build log carries CLI output for whoever reads the job.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

ROOT_LOGGER = "tedexec"
LEVEL_ENV = "TEDEXEC_LOG_LEVEL"
FILE_ENV = "TEDEXEC_LOG_FILE"

_HANDLER_ATTR = "_tedexec_handler_id"
_STREAM_ID = "stream"
_FILE_ID = "file"
_FORMAT = "ts=%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s"


def _level_from_env(level: int | None) -> int:
    if level is not None:
        return level
    name = os.environ.get(LEVEL_ENV, "").strip().upper()
    value = getattr(logging, name, None) if name else None
    return int(value) if isinstance(value, int) else logging.WARNING


def _find_handler(root: logging.Logger, handler_id: str) -> logging.Handler | None:
    return next(
        (h for h in root.handlers if getattr(h, _HANDLER_ATTR, None) == handler_id),
        None,
    )


def _drop_handler(root: logging.Logger, handler: logging.Handler | None) -> None:
    if handler is None:
        return
    root.removeHandler(handler)
    handler.close()


def get_logger(name: str) -> logging.Logger:
    """Return ``tedexec.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(*, level: int | None = None) -> None:
    """Attach (or refresh) the stream and optional file handler.

    The stream level comes from *level*, then ``TEDEXEC_LOG_LEVEL``, then
    WARNING. When ``TEDEXEC_LOG_FILE`` names a path, a file handler records
    at least INFO so run lifecycle events are kept even when the console is
    quiet. Calling this again reuses the handlers it created and rebinds the
    stream handler to the current ``sys.stderr``.
    """
    stream_level = _level_from_env(level)
    root = logging.getLogger(ROOT_LOGGER)
    formatter = logging.Formatter(_FORMAT)

    stream = _find_handler(root, _STREAM_ID)
    if stream is None:
        stream = logging.StreamHandler()
        setattr(stream, _HANDLER_ATTR, _STREAM_ID)
        root.addHandler(stream)
    elif isinstance(stream, logging.StreamHandler) and stream.stream is not sys.stderr:
        # Plain assignment; setStream() flushes the old stream, which may be closed.
        stream.stream = sys.stderr
    stream.setFormatter(formatter)
    stream.setLevel(stream_level)

    effective = stream_level
    current_file = _find_handler(root, _FILE_ID)
    raw_path = os.environ.get(FILE_ENV, "").strip()
    if not raw_path:
        _drop_handler(root, current_file)
    else:
        target = Path(raw_path).expanduser().resolve()
        target.parent.mkdir(parents=True, exist_ok=True)
        same_target = isinstance(current_file, logging.FileHandler) and (
            Path(current_file.baseFilename).resolve() == target
        )
        if not same_target:
            _drop_handler(root, current_file)
            current_file = logging.FileHandler(target, encoding="utf-8")
            setattr(current_file, _HANDLER_ATTR, _FILE_ID)
            root.addHandler(current_file)
        file_level = min(stream_level, logging.INFO)
        current_file.setFormatter(formatter)
        current_file.setLevel(file_level)
        effective = min(effective, file_level)

    root.setLevel(effective)
