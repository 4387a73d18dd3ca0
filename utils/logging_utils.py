"""
Logging utilities with structured logging support.
"""
import os
import logging
import sys
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator


def setup_logging(output_folder: str, run_id: str = None) -> None:
    """
    Configure and initialize logging for the application.
    Creates a 'logs' folder in the output directory.

    Args:
        output_folder: Folder to store log files
        run_id: Optional run ID to use in log filename
    """
    log_folder = os.path.join(output_folder, "logs")
    try:
        os.makedirs(log_folder, exist_ok=True)
    except OSError as e:
        print(f"Critical Error: Could not create log directory {log_folder}. Error: {e}", file=sys.stderr)

    if run_id is None:
        run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file_path = os.path.join(log_folder, f"takeoff_log_{run_id}.txt")

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    numeric_log_level = getattr(logging, log_level_str, None)
    if not isinstance(numeric_log_level, int):
        print(f"Warning: Invalid LOG_LEVEL '{log_level_str}' in environment. Defaulting to INFO.", file=sys.stderr)
        numeric_log_level = logging.INFO
        log_level_str = "INFO"

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_log_level)

    # Clear handlers so repeated runs in one process don't duplicate output
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    try:
        file_handler = logging.FileHandler(log_file_path, mode="w")
        file_handler.setFormatter(formatter)
        file_handler.setLevel(numeric_log_level)
        root_logger.addHandler(file_handler)
    except OSError as e:
        print(f"Critical Error: Failed to create file handler for {log_file_path}. Error: {e}", file=sys.stderr)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(numeric_log_level)
    root_logger.addHandler(console_handler)

    logging.getLogger("utils.logging_utils").info(
        f"Logging initialized. Effective log level: {log_level_str}. Log file: {log_file_path}"
    )


class SubstringFilter(logging.Filter):
    """Drops records whose message contains any of the given fragments."""

    def __init__(self, fragments: Iterable[str]):
        super().__init__()
        self.fragments = tuple(fragments)
        self.suppressed = 0

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if any(fragment in message for fragment in self.fragments):
            self.suppressed += 1
            return False
        return True


@contextmanager
def suppress_noisy_warnings(logger_names: Iterable[str], fragments: Iterable[str]) -> Iterator[SubstringFilter]:
    """
    Attach a SubstringFilter to the named loggers for the duration of the block.

    Only the named loggers are touched and the filter is always removed on exit.
    """
    noise_filter = SubstringFilter(fragments)
    loggers = [logging.getLogger(name) for name in logger_names]
    for target in loggers:
        target.addFilter(noise_filter)
    try:
        yield noise_filter
    finally:
        for target in loggers:
            target.removeFilter(noise_filter)
