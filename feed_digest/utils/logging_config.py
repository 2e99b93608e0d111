"""
Logging setup for the digest pipeline.

Console output is colored for interactive runs; file output rotates daily
and a separate file collects errors. Nothing is configured on import: the
CLI entry point calls ``setup_logging`` once.
"""

import json
import logging
import logging.handlers
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter for log shipping."""

    def format(self, record):
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if hasattr(record, "extra_data"):
            entry["extra"] = record.extra_data
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname, "")
        formatted = (
            f"{color}[{self.formatTime(record, '%H:%M:%S')}] {record.levelname:8} "
            f"[{record.name:28}] {record.getMessage()}{self.RESET}"
        )
        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"
        return formatted


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
    enable_file_logging: bool = True,
    enable_structured_logging: bool = False,
) -> None:
    """
    Configure root logging for the pipeline.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files (defaults to ./logs)
        enable_file_logging: Whether to write logs to files
        enable_structured_logging: Whether to use JSON structured logging
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(root_logger.level)
    console_handler.setFormatter(
        StructuredFormatter() if enable_structured_logging else ColoredConsoleFormatter()
    )
    root_logger.addHandler(console_handler)

    if enable_file_logging:
        log_path = Path(log_dir) if log_dir else Path.cwd() / "logs"
        log_path.mkdir(parents=True, exist_ok=True)

        daily_handler = logging.handlers.TimedRotatingFileHandler(
            log_path / "feed_digest.log",
            when="midnight",
            backupCount=7,
            encoding="utf-8",
        )
        daily_handler.setLevel(logging.DEBUG)
        if enable_structured_logging:
            daily_handler.setFormatter(StructuredFormatter())
        else:
            daily_handler.setFormatter(logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)-28s | %(message)s"
            ))
        root_logger.addHandler(daily_handler)

        error_handler = logging.FileHandler(log_path / "errors.log", encoding="utf-8")
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)-28s | %(funcName)s:%(lineno)d | %(message)s"
        ))
        root_logger.addHandler(error_handler)

    # Third-party clients are chatty at INFO
    for noisy in ("aiohttp", "google_genai", "httpx", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


class PerformanceTracker:
    """Context manager that logs how long a block took."""

    def __init__(self, operation_name: str, logger: Optional[logging.Logger] = None):
        self.operation_name = operation_name
        self.logger = logger or logging.getLogger(__name__)
        self.start_time: Optional[float] = None
        self.duration_ms: float = 0.0

    def __enter__(self):
        self.start_time = time.monotonic()
        self.logger.debug(f"⏱️ Starting: {self.operation_name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.duration_ms = (time.monotonic() - self.start_time) * 1000
            if exc_type:
                self.logger.error(f"💥 Failed: {self.operation_name} ({self.duration_ms:.1f}ms) - {exc_val}")
            else:
                self.logger.info(f"✅ Completed: {self.operation_name} ({self.duration_ms:.1f}ms)")
        return False


def log_pipeline_metrics(
    logger: logging.Logger,
    stage: str,
    input_count: int,
    output_count: int,
    duration_ms: float,
    **extra_data
):
    """Log structured stage metrics."""
    metrics = {
        "stage": stage,
        "input_count": input_count,
        "output_count": output_count,
        "duration_ms": duration_ms,
        **extra_data,
    }
    logger.info(
        f"📊 {stage}: {input_count} → {output_count} ({duration_ms:.1f}ms)",
        extra={"extra_data": metrics},
    )


def log_ai_interaction(
    logger: logging.Logger,
    prompt_key: str,
    model: str,
    tokens_used: int,
    response_time_ms: float,
    success: bool,
    **extra_data
):
    interaction = {
        "prompt_key": prompt_key,
        "model": model,
        "tokens_used": tokens_used,
        "response_time_ms": response_time_ms,
        "success": success,
        **extra_data,
    }
    status = "✅" if success else "❌"
    logger.info(
        f"{status} AI: {prompt_key} | {model} | {tokens_used} tokens | {response_time_ms:.1f}ms",
        extra={"extra_data": interaction},
    )
