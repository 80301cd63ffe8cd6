"""Loguru setup plus structured log records for LLM calls, analysis steps and events.

Importing this module configures the sinks: colored stderr at the configured
level and a daily rotating DEBUG file under ``settings.log_dir``. Structured
records are written as ``KIND: {json}`` so they can be grepped out of the file.
"""
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from mentor.config import settings

LOG_DIR = Path(settings.log_dir)
NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "hpack",
    "openai._base_client",
    "anthropic._base_client",
    "trafilatura",
    "asyncio",
)


def configure_logging() -> None:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.app_log_level.upper(),
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> <level>{level: <8}</level> "
            "<cyan>{name}</cyan>:<cyan>{line}</cyan> {message}"
        ),
    )
    logger.add(
        LOG_DIR / "mentor_{time:YYYY-MM-DD}.log",
        level="DEBUG",
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}",
        rotation="00:00",
        retention="7 days",
        compression="zip",
    )
    quiet = settings.noisy_log_level.upper()
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)


def _emit(kind: str, **fields: Any) -> None:
    record = {"timestamp": datetime.now(timezone.utc).isoformat(), **fields}
    logger.opt(depth=2).info("{}: {}", kind, json.dumps(record, default=str))


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    _emit(
        "LLM_CALL",
        model=model,
        caller=caller,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        duration_ms=duration_ms,
        status=status,
        error=error,
    )


def log_research_step(
    request_id: str,
    step_type: str,
    status: str,
    data: Optional[dict[str, Any]] = None,
) -> None:
    """One state change of an analysis run, keyed by its request id."""
    _emit("RESEARCH_STEP", request_id=request_id, step_type=step_type, status=status, data=data or {})


def log_event(event_type: str, message: str, **kwargs: Any) -> None:
    _emit("EVENT", event_type=event_type, message=message, **kwargs)


configure_logging()
