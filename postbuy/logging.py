"""Loguru setup and structured logging helpers for enrichment runs."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

from loguru import logger

_configured = False


class InterceptHandler(logging.Handler):
    """Intercept standard logging and redirect to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def env_log_level(default: str = "INFO") -> str:
    return os.getenv("LOG_LEVEL", default).upper()


def configure_logging(
    level: str | None = None,
    log_dir: Path | str = "logs",
    log_file: str = "postbuy_{time:YYYY-MM-DD}.log",
) -> None:
    """
    Configure loguru for the whole process.

    Console sink on stderr, a rotating file sink under ``log_dir`` and, when
    ``LOG_JSON`` is truthy, a serialized JSONL sink. Standard logging from
    Playwright/httpx/asyncio is routed into loguru.
    """
    global _configured
    level = (level or env_log_level()).upper()
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    # Remove default handler to avoid duplicate logs
    logger.remove()
    logger.configure(extra={"task": "-"})
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{extra[task]}</cyan> | {message}",
        backtrace=True,
        diagnose=False,
        enqueue=True,
    )
    logger.add(
        log_path / log_file,
        rotation="10 MB",
        retention="10 days",
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {extra} - {message}",
        backtrace=True,
        diagnose=True,
        enqueue=True,
    )
    if os.getenv("LOG_JSON", "0").lower() in {"1", "true", "yes", "on"}:
        logger.add(
            log_path / "postbuy_{time}.jsonl",
            level="DEBUG",
            serialize=True,
            enqueue=True,
        )
    logging.basicConfig(handlers=[InterceptHandler()], level=logging.INFO, force=True)
    for logger_name in ["playwright", "httpx", "httpcore", "asyncio", "urllib3"]:
        logging.getLogger(logger_name).handlers = [InterceptHandler()]
        logging.getLogger(logger_name).propagate = False

    _configured = True


def setup_default_logging() -> None:
    if not _configured:
        configure_logging()


def bind_context(**kwargs: Any):
    """Return a logger with bound contextual fields (task/run/attempt)."""
    return logger.bind(**{k: v for k, v in kwargs.items() if v is not None})


def task_transition(task: str, state: str, attempt: int | None = None, run_id: str | None = None) -> None:
    bind_context(task=task, run_id=run_id, attempt=attempt).debug(f"state -> {state}")


def task_started(task: str, run_id: str | None = None) -> None:
    bind_context(task=task, run_id=run_id).info("task_start")


def task_finished(task: str, summary: dict[str, Any], run_id: str | None = None) -> None:
    bind_context(task=task, run_id=run_id).info("task_end", **summary)
