# Centralized logging configuration for the Intune onboarding tool

import logging
import logging.handlers
import os
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-20s | %(funcName)-15s | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(log_level: str = "INFO",
                  log_to_file: bool = True,
                  log_dir: str = "logs",
                  log_name: str = "start-intune-onboarding",
                  max_file_size: int = 10 * 1024 * 1024,  # 10MB
                  backup_count: int = 5) -> logging.Logger:
    """
    Set up logging for the onboarding tool.

    The log file doubles as the run's audit log: every notification shown to the
    user is written to it, so it is appended to rather than truncated.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_file: Whether to log to a file
        log_dir: Directory for the log file
        log_name: Log file name without extension
        max_file_size: Maximum size of the log file in bytes
        backup_count: Number of rotated log files to keep

    Returns:
        Configured root logger
    """
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, log_level.upper()))

    # Clear any existing handlers
    logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, log_level.upper()))
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    log_file = None
    if log_to_file:
        log_path = Path(log_dir)
        try:
            log_path.mkdir(parents=True, exist_ok=True)
            log_file = log_path / f"{log_name}.log"
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=max_file_size,
                backupCount=backup_count,
                encoding='utf-8'
            )
        except OSError as e:
            logger.warning(f"Cannot write to log directory {log_path}: {e}. Logging to console only")
            log_file = None
        else:
            file_handler.setLevel(getattr(logging, log_level.upper()))
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    # Keep HTTP client chatter out of the audit log
    for noisy in ('httpx', 'httpcore', 'urllib3'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.debug(f"Logging initialized (level={log_level}, file={log_file})")
    return logger


def write_run_header(tool_version: str, os_version: str, log_path: Optional[str] = None):
    """Write the run header that opens each run in the audit log."""
    logger = logging.getLogger(__name__)
    logger.info("=" * 80)
    logger.info(f"{datetime.now().strftime(DATE_FORMAT)} | Logging run of intune-onboarding")
    if log_path:
        logger.info(f"Log Path: {os.path.abspath(log_path)}")
    logger.info(f"Tool Version: {tool_version}")
    logger.info(f"OS Version: {os_version}")
    logger.info("=" * 80)


def log_step_action(step: str, result: str, details: Optional[str] = None, code: Optional[int] = None):
    """
    Log a workflow step result with a structured format.

    Args:
        step: Step name (e.g. "unbind", "convert", "encryption-disable")
        result: Outcome label ("Success", "Skipped", "Retried(2)", "Failed(165)")
        details: Additional details about the step
        code: Exit code associated with a failure
    """
    logger = logging.getLogger(__name__)

    message = f"STEP | {step} | {result}"
    if code:
        message += f" | Code: {code}"
    if details:
        message += f" | {details}"

    # Log at appropriate level based on result
    if result.startswith("Failed"):
        logger.error(message)
    elif result.startswith("Retried"):
        logger.warning(message)
    else:
        logger.info(message)


def log_run_summary(outcomes: Iterable, exit_code: int, duration_seconds: float):
    """Log the audit record of a finished run."""
    logger = logging.getLogger(__name__)
    outcomes = list(outcomes)
    failed = [o for o in outcomes if o.status.value == "Failed"]

    logger.info("=" * 80)
    logger.info(f"RUN SUMMARY | Exit Code: {exit_code} | Duration: {duration_seconds:.2f}s | "
                f"Steps: {len(outcomes)} | Failed: {len(failed)}")
    for outcome in outcomes:
        logger.info(f"  {outcome}")
    logger.info("=" * 80)
