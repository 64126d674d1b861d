"""
Logging setup for the sourcing harness.

Every component logs through stdlib logging with a bracketed component
prefix ("[Collector] [Item 42] ..."). The harness calls setup_logging()
once; records go to the console and to a rotating file:

    logs/sourcing/system.log

Usage in any module:
    import logging
    logger = logging.getLogger(__name__)

Job-level lines share one format so a run can be followed with:
    tail -f logs/sourcing/system.log | grep "JOB\\|STAGE\\|LLM"
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# =============================================================================
# Configuration
# =============================================================================

LOG_DIR = Path("logs/sourcing")
SYSTEM_LOG_NAME = "system.log"
MAX_LOG_SIZE = 10 * 1024 * 1024  # 10 MB per file
BACKUP_COUNT = 5

DEFAULT_LOG_LEVEL = "INFO"

LOG_FORMAT = "%(asctime)s | %(levelname)-5s | %(name)-30s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-5s | %(name)-20s | %(message)s"
CONSOLE_DATE_FORMAT = "%H:%M:%S"

# Third-party loggers that drown the pipeline at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "playwright")

_configured_log_file: Optional[Path] = None
_installed_handlers: list[logging.Handler] = []
_logging_configured = False


# =============================================================================
# Setup
# =============================================================================


def _build_file_handler(log_file: Path, level: int) -> RotatingFileHandler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_file,
        maxBytes=MAX_LOG_SIZE,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    return handler


def _build_console_handler(level: int) -> logging.StreamHandler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, CONSOLE_DATE_FORMAT))
    return handler


def setup_logging(
    level: Optional[str] = None,
    log_to_console: bool = True,
    log_to_file: bool = True,
    log_dir: Optional[Path] = None,
    service_name: str = "sourcing",
) -> None:
    """
    Configure root logging for a sourcing run. Later calls are no-ops.

    Args:
        level: DEBUG, INFO, WARNING or ERROR. Defaults to LOG_LEVEL env var or INFO.
        log_to_console: Also log to stdout
        log_to_file: Log to <log_dir>/system.log
        log_dir: Directory for the rotating file (default logs/sourcing)
        service_name: Logger name used for the startup banner
    """
    global _logging_configured, _configured_log_file

    if _logging_configured:
        return

    level_name = (level or os.getenv("LOG_LEVEL", DEFAULT_LOG_LEVEL)).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if log_to_file:
        _configured_log_file = (log_dir or LOG_DIR) / SYSTEM_LOG_NAME
        _installed_handlers.append(_build_file_handler(_configured_log_file, log_level))
    if log_to_console:
        _installed_handlers.append(_build_console_handler(log_level))
    for handler in _installed_handlers:
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _logging_configured = True

    banner = logging.getLogger(service_name)
    banner.info(f"Logging initialized for {service_name} (level {level_name})")
    if _configured_log_file:
        banner.info(f"Log file: {_configured_log_file.absolute()}")


def reset_logging() -> None:
    """Remove the handlers setup_logging() installed and allow it to run again."""
    global _logging_configured, _configured_log_file

    root_logger = logging.getLogger()
    while _installed_handlers:
        handler = _installed_handlers.pop()
        root_logger.removeHandler(handler)
        handler.close()
    _logging_configured = False
    _configured_log_file = None


def get_system_log_path() -> Path:
    """Path of the rotating log file (the default one before setup)."""
    return _configured_log_file or LOG_DIR / SYSTEM_LOG_NAME


# =============================================================================
# Standard job lines
# =============================================================================


def log_job_start(logger: logging.Logger, item_id: str, description: str, strategy: str):
    logger.info(f"[Item {item_id}] JOB START | strategy={strategy} | item={description[:80]}")


def log_job_end(logger: logging.Logger, item_id: str, winner_index: int, offers: int, elapsed_ms: float):
    """NO_OFFER when winner_index is -1."""
    status = "WINNER" if winner_index >= 0 else "NO_OFFER"
    logger.info(
        f"[Item {item_id}] JOB END | {status} | offers={offers} | elapsed={elapsed_ms:.0f}ms"
    )


def log_stage(logger: logging.Logger, item_id: str, stage: str, status: str, elapsed_ms: float = None):
    elapsed = f" | elapsed={elapsed_ms:.0f}ms" if elapsed_ms else ""
    logger.info(f"[Item {item_id}] STAGE | {stage} | {status}{elapsed}")


def log_llm_call(logger: logging.Logger, role: str, provider: str, model: str, elapsed_ms: float = None):
    elapsed = f" | elapsed={elapsed_ms:.0f}ms" if elapsed_ms else ""
    logger.info(f"LLM | {role} | {provider}/{model}{elapsed}")
