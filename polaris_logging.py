"""
Logging setup shared by the audit and report entry points.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from polaris_errors import FileSystemError

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def setup_logging(output_dir: Path | None = None, level: str = "INFO") -> Path | None:
    """
    Configure root logging for a run

    Args:
        output_dir: Directory for the timestamped log file; console only when None
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Path of the log file, if one was created

    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Calling twice (console first, then with the output directory) must not duplicate lines
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if output_dir is None:
        return None

    log_file = output_dir / f"polaris_audit_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
    except OSError as e:
        raise FileSystemError(f"Cannot open log file {log_file}: {e}") from e
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)
    return log_file
