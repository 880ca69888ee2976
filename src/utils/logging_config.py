"""
Logging setup for the news aggregator.

Console output is colored by level. When a log directory is given, a
midnight-rotated ``news_aggregator.log`` keeps everything at DEBUG and
``errors.log`` keeps ERROR and above. ``json_output`` switches both the console
and the rotated file to one JSON object per line.

Importing this module configures nothing; ``setup_logging`` is called by the CLI.
"""

import json
import logging
import logging.handlers
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


PLAIN_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
ERROR_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"

# Loggers that log once per provider call or cache hit
NOISY_LOGGERS = (
    "src.services.ai_service",
    "src.services.cache_service",
    "src.services.http_client",
)
THIRD_PARTY_LOGGERS = ("aiohttp", "google_genai", "httpx")


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; ``extra_data`` attached via ``extra=`` lands under "extra"."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        extra = getattr(record, "extra_data", None)
        if extra:
            entry["extra"] = extra
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__(datefmt="%H:%M:%S")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        short_name = record.name.rsplit(".", 1)[-1]
        line = f"{self.formatTime(record, self.datefmt)} {record.levelname:<8} {short_name:<20} {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        if not self.use_color:
            return line
        return f"{self.LEVEL_COLORS.get(record.levelno, '')}{line}{self.RESET}"


def _level(name: str) -> int:
    level = getattr(logging, name.upper(), None)
    return level if isinstance(level, int) else logging.INFO


def _file_handlers(log_path: Path, json_output: bool) -> list:
    log_path.mkdir(parents=True, exist_ok=True)

    rotating = logging.handlers.TimedRotatingFileHandler(
        log_path / "news_aggregator.log", when="midnight", backupCount=7, encoding="utf-8"
    )
    rotating.setLevel(logging.DEBUG)
    rotating.setFormatter(StructuredFormatter() if json_output else logging.Formatter(PLAIN_FORMAT))

    errors = logging.FileHandler(log_path / "errors.log", encoding="utf-8")
    errors.setLevel(logging.ERROR)
    errors.setFormatter(logging.Formatter(ERROR_FORMAT))
    return [rotating, errors]


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
    json_output: bool = False,
) -> None:
    """
    Replace the root handlers with console output and, when ``log_dir`` is set,
    the rotating and error log files.
    """
    level = _level(log_level)
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.DEBUG if log_dir else level)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(StructuredFormatter() if json_output else ColoredConsoleFormatter(sys.stdout.isatty()))
    root.addHandler(console)

    if log_dir:
        for handler in _file_handlers(Path(log_dir), json_output):
            root.addHandler(handler)

    configure_service_loggers(log_level)


def configure_service_loggers(log_level: str) -> None:
    """Keep per-call services and third-party clients out of verbose console output."""
    level = _level(log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))
    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class PerformanceTracker:
    """Times a ``with`` block and logs how long it took."""

    def __init__(self, operation_name: str, logger: Optional[logging.Logger] = None):
        self.operation_name = operation_name
        self.logger = logger or logging.getLogger(__name__)
        self.duration_ms = 0.0
        self._started = 0.0

    def __enter__(self) -> "PerformanceTracker":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.duration_ms = (time.perf_counter() - self._started) * 1000
        if exc_type is None:
            self.logger.info(f"⏱️ {self.operation_name} took {self.duration_ms:.1f}ms")
        else:
            self.logger.error(f"💥 {self.operation_name} failed after {self.duration_ms:.1f}ms: {exc_val}")
        return False


def log_pipeline_metrics(
    logger: logging.Logger,
    stage: str,
    input_count: int,
    output_count: int,
    duration_ms: float,
    **extra_data,
) -> None:
    dropped = input_count - output_count
    data = {
        "stage": stage,
        "input_count": input_count,
        "output_count": output_count,
        "dropped": dropped,
        "duration_ms": round(duration_ms, 1),
        **extra_data,
    }
    logger.info(
        f"📊 {stage}: {input_count} in, {output_count} out ({duration_ms:.1f}ms)",
        extra={"extra_data": data},
    )


def log_ai_interaction(
    logger: logging.Logger,
    prompt_key: str,
    model: str,
    response_time_ms: float,
    success: bool,
    tokens_used: int = 0,
    **extra_data,
) -> None:
    """Debug-level record of one model call; the JSON formatter keeps the numbers."""
    data = {
        "prompt_key": prompt_key,
        "model": model,
        "success": success,
        "tokens_used": tokens_used,
        "response_time_ms": round(response_time_ms, 1),
        **extra_data,
    }
    outcome = "ok" if success else "empty"
    logger.debug(
        f"🤖 {prompt_key} via {model}: {outcome}, {tokens_used} tokens, {response_time_ms:.1f}ms",
        extra={"extra_data": data},
    )
