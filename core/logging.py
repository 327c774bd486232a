"""Logging utilities for camera, vision and speech events."""

from __future__ import annotations

import atexit
import importlib
import importlib.util
import logging
import logging.handlers
from pathlib import Path
import queue
from typing import Any


def _rich_available() -> bool:
    return importlib.util.find_spec("rich") is not None


if _rich_available():
    rich_logging = importlib.import_module("rich.logging")
    rich_console = importlib.import_module("rich.console")
    rich_text = importlib.import_module("rich.text")
    RichHandler = rich_logging.RichHandler
    Console = rich_console.Console
    Text = rich_text.Text
    console = Console()
else:
    RichHandler = None
    Console = None
    Text = None
    console = None


def setup_logging() -> logging.Logger:
    logger = logging.getLogger("vision_assist")
    logger.setLevel(logging.INFO)

    if RichHandler is not None:
        if not any(isinstance(h, RichHandler) for h in logger.handlers):
            handler = RichHandler(rich_tracebacks=True, console=console)
            formatter = logging.Formatter("%(message)s", datefmt="[%X]")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
    else:
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s %(levelname)s: %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)

    logger.propagate = False
    return logger


logger = setup_logging()

_queue_listener: logging.handlers.QueueListener | None = None
_queue_handlers: list[logging.Handler] = []
_file_log_path: Path | None = None
_atexit_registered = False


def _shutdown_file_logging() -> None:
    global _queue_listener

    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None


def _remove_queue_handlers() -> None:
    for handler in _queue_handlers:
        for target_logger in (logging.getLogger(), logger):
            if handler in target_logger.handlers:
                target_logger.removeHandler(handler)
    _queue_handlers.clear()


def enable_file_logging(log_path: Path) -> None:
    """Mirror application logs into ``log_path`` from a background listener."""

    global _queue_listener, _file_log_path, _atexit_registered

    log_path = Path(log_path).expanduser()
    if _file_log_path == log_path and _queue_listener is not None:
        return

    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None

    _remove_queue_handlers()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    file_handler.setFormatter(formatter)

    log_queue: queue.SimpleQueue[logging.LogRecord] = queue.SimpleQueue()
    queue_handler = logging.handlers.QueueHandler(log_queue)
    queue_handler.setLevel(logging.INFO)

    logging.getLogger().addHandler(queue_handler)
    logger.addHandler(queue_handler)
    _queue_handlers.append(queue_handler)

    _queue_listener = logging.handlers.QueueListener(
        log_queue,
        file_handler,
        respect_handler_level=True,
    )
    _queue_listener.start()

    _file_log_path = log_path

    if not _atexit_registered:
        atexit.register(_shutdown_file_logging)
        _atexit_registered = True


def disable_file_logging() -> None:
    """Stop the background file writer and detach its handlers."""

    global _file_log_path

    _shutdown_file_logging()
    _remove_queue_handlers()
    _file_log_path = None


def _format_text(message: str, style: str) -> Any:
    if Text is None:
        return message
    return Text(message, style=style)


def log_error(message: str) -> None:
    logger.error(_format_text(message, style="bold red"))


def log_info(message: str, style: str = "bold white") -> None:
    logger.info(_format_text(message, style=style))


def log_warning(message: str) -> None:
    logger.warning(_format_text(message, style="bold yellow"))


def set_level(level_name: str) -> int:
    """Apply a level name such as ``"DEBUG"`` to the application logger."""

    level = logging._nameToLevel.get(str(level_name).upper(), logging.INFO)
    logger.setLevel(level)
    return level


MAX_RAW = 80

DETECTION_STYLES = {
    "ready": "bold green",
    "directional": "bold cyan",
    "not_visible": "bold yellow",
    "unparsed": "bold magenta",
}


def _truncate_str(s: str, max_len: int = MAX_RAW) -> str:
    if len(s) <= max_len:
        return s
    return s[: max_len - 1] + "…"


def _first_line(s: str, max_len: int = MAX_RAW) -> str:
    if not s or not s.strip():
        return ""
    line = s.strip().splitlines()[0]
    return _truncate_str(line, max_len)


def log_detection(result: Any) -> None:
    """Log a one-line summary of a parsed detection result."""

    kind = getattr(getattr(result, "kind", None), "value", str(getattr(result, "kind", "?")))
    parts = [f"[VISION] {kind}"]
    command = getattr(result, "command", None)
    if command:
        parts.append(f"command={command!r}")
    bbox = getattr(result, "bbox", None)
    if bbox is not None:
        parts.append(f"bbox={bbox.as_list()}")
    note = getattr(result, "note", None)
    if note:
        parts.append(f"note={note!r}")
    raw = _first_line(getattr(result, "raw_text", "") or "")
    if raw:
        parts.append(f"raw={raw!r}")
    logger.info(_format_text(" ".join(parts), DETECTION_STYLES.get(kind, "bold white")))
