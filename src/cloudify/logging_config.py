"""
Logging configuration for Cloudify

Provides structured logging with both console output and file logging.
Compose invocations are logged to dedicated files in logs/processes/.
"""

import logging
import logging.handlers
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

SECRET_ENV_VARS = (
    "POSTGRES_PASSWORD",
    "MONGO_INITDB_ROOT_PASSWORD",
    "RABBITMQ_DEFAULT_PASS",
)


def setup_logging(
    log_dir: str = "logs",
    verbose: bool = False,
    log_level: Optional[str] = None,
    enable_file_logging: bool = True,
) -> logging.Logger:
    """
    Set up logging for Cloudify operations.

    Args:
        log_dir: Directory for log files
        verbose: Enable verbose console output
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
        enable_file_logging: Whether to write logs to files

    Returns:
        Configured logger instance
    """
    log_path = Path(log_dir)
    if enable_file_logging:
        log_path.mkdir(parents=True, exist_ok=True)
        (log_path / "processes").mkdir(exist_ok=True)

    if log_level:
        level = getattr(logging, log_level.upper(), logging.INFO)
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Console logs go to stderr so command output on stdout stays parseable.
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if enable_file_logging:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_path / f"cloudify_{timestamp}.log"

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,  # 10MB files, 5 backups
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    logger = logging.getLogger("cloudify")
    logger.debug(f"Logging initialized - Level: {logging.getLevelName(level)}")
    if enable_file_logging:
        logger.debug(f"Log directory: {log_path.absolute()}")

    return logger


def get_subprocess_log_file(operation: str, log_dir: str = "logs") -> str:
    """
    Generate timestamped log file path for a process operation.

    Args:
        operation: Operation name (e.g., 'compose_up', 'compose_logs')
        log_dir: Base log directory

    Returns:
        Full path to log file for process output
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    safe_operation = re.sub(r"[^A-Za-z0-9_.-]+", "_", operation)
    log_file = Path(log_dir) / "processes" / f"{safe_operation}_{timestamp}.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)
    return str(log_file)


def mask_sensitive_data(message: str) -> str:
    """
    Mask sensitive information in log messages.

    Args:
        message: Log message that may contain sensitive data

    Returns:
        Message with sensitive information masked
    """
    message = re.sub(
        r"(postgres(?:ql)?)://([^:/\s]+):([^@\s]+)@",
        r"\1://\2:***@",
        message,
    )

    for name in SECRET_ENV_VARS:
        message = re.sub(rf"{name}(['\"]?\s*[=:]\s*)[^\s]+", rf"{name}\1***", message)

    message = re.sub(
        r"password[=\s]+[^\s]+", "password=***", message, flags=re.IGNORECASE
    )

    return message


class SubprocessLogHandler:
    """
    Handler for process operations with dedicated logging.
    """

    def __init__(self, operation: str, log_dir: str = "logs"):
        """
        Initialize process log handler.

        Args:
            operation: Name of the operation being logged
            log_dir: Base directory for log files
        """
        self.operation = operation
        self.log_file = get_subprocess_log_file(operation, log_dir)
        self.logger = logging.getLogger(f"cloudify.process.{operation}")
        self.logger.propagate = False

        self._handler = logging.FileHandler(self.log_file)
        self._handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        self.logger.addHandler(self._handler)
        self.logger.setLevel(logging.DEBUG)

    def log_command(self, command: List[str]) -> None:
        """Log the command being executed."""
        masked_command = [mask_sensitive_data(arg) for arg in command]
        self.logger.info(f"Executing command: {' '.join(masked_command)}")

    def log_output(self, output: str, level: int = logging.INFO) -> None:
        """Log process output."""
        if output and output.strip():
            masked_output = mask_sensitive_data(output.strip())
            self.logger.log(level, masked_output)

    def log_completion(self, outcome: str, return_code: Optional[int], elapsed_time: float) -> None:
        """Log process completion."""
        if return_code == 0:
            self.logger.info(
                f"✓ {self.operation} completed successfully in {elapsed_time:.2f}s"
            )
        else:
            self.logger.error(
                f"✗ {self.operation} ended with {outcome} (return code {return_code}) "
                f"after {elapsed_time:.2f}s"
            )

    def close(self) -> None:
        """Detach and close the file handler."""
        self.logger.removeHandler(self._handler)
        self._handler.close()

    def get_log_file_path(self) -> str:
        """Get the path to the log file for this operation."""
        return self.log_file


def configure_third_party_loggers() -> None:
    """Configure third-party library loggers to reduce noise."""
    logging.getLogger("psycopg2").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


configure_third_party_loggers()
