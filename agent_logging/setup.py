"""
Logging Setup
Configures rotating file + console logging for QVoiceTxt components.
"""
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from typing import Optional

from qvoice_orchestrator.state_paths import resolve_state_dir

DETAILED_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(filename)s:%(lineno)d | %(message)s"
SIMPLE_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"

# Package loggers that write through the component's handlers
PACKAGE_LOGGERS = ("qvoice_gateway", "qvoice_orchestrator", "storage")


def setup_logging(
    component_name: str,
    log_dir: Optional[str] = None,
    log_level: str = "INFO",
    console_output: bool = True,
) -> logging.Logger:
    """
    Setup logging for a QVoiceTxt component.

    Creates a rotating file handler and an optional console handler, and
    attaches them to the component logger and to the package loggers so that
    ``logging.getLogger(__name__)`` calls inside the packages land in the
    same files.

    Args:
        component_name: Name of the component (GATEWAY, CLI, SCHEDULER, ...)
        log_dir: Directory for log files (defaults to <state_dir>/logs/{component_name}/)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        console_output: Whether to also log to console

    Returns:
        Configured logger instance

    Example:
        >>> from agent_logging import setup_logging
        >>> logger = setup_logging("CLI", console_output=False)
        >>> logger.info("Session started")
    """
    if log_dir is None:
        log_dir = resolve_state_dir() / "logs" / component_name.lower()
    else:
        log_dir = os.path.expanduser(str(log_dir))

    os.makedirs(log_dir, exist_ok=True)

    level = getattr(logging, log_level.upper(), logging.INFO)

    detailed_formatter = logging.Formatter(fmt=DETAILED_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    simple_formatter = logging.Formatter(fmt=SIMPLE_FORMAT, datefmt="%H:%M:%S")

    log_file = os.path.join(
        log_dir, f"{component_name.lower()}_{datetime.now().strftime('%Y%m%d')}.log"
    )

    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(detailed_formatter)

    handlers: list[logging.Handler] = [file_handler]
    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(simple_formatter)
        handlers.append(console_handler)

    for name in (component_name, *PACKAGE_LOGGERS):
        target = logging.getLogger(name)
        target.setLevel(level)
        # Clear existing handlers to avoid duplicates
        for handler in list(target.handlers):
            target.removeHandler(handler)
            handler.close()
        for handler in handlers:
            target.addHandler(handler)
        target.propagate = False

    logger = logging.getLogger(component_name)
    logger.info(f"{component_name} logging initialized")
    logger.debug(f"Log file: {log_file}")

    return logger


def get_component_logger(component_name: str) -> logging.Logger:
    """
    Get or create logger for a component.

    Args:
        component_name: Name of the component

    Returns:
        Logger instance
    """
    logger = logging.getLogger(component_name)

    if not logger.handlers:
        setup_logging(component_name, log_level=os.getenv("LOG_LEVEL", "INFO"))

    return logger
