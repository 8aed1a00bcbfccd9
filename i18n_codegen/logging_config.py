import logging
import os
import sys
from typing import Optional

from tqdm import tqdm

LOGGER_NAME = "i18n_codegen"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class TqdmLoggingHandler(logging.StreamHandler):
    """
    Console handler that routes records through tqdm.write.

    Writing directly to the stream while the page progress bar is drawn
    would tear the bar; tqdm.write clears it, prints the line and redraws it.
    """
    def __init__(self, stream=None):
        super().__init__(stream or sys.stderr)

    def emit(self, record):
        try:
            tqdm.write(self.format(record), file=self.stream)
            self.flush()
        except (KeyboardInterrupt, SystemExit):
            raise
        except Exception:
            self.handleError(record)


def setup_logger(log_level_str: str, log_file_path: Optional[str], log_to_console: bool) -> logging.Logger:
    """
    Configure the `i18n_codegen` logger, which every module logs through.

    Args:
        log_level_str: The logging level as a string (e.g., 'INFO', 'DEBUG').
        log_file_path: Where to append the log; None or empty disables the file.
        log_to_console: Whether to also log to stderr.

    Returns:
        The configured logger instance.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level_str.upper(), logging.INFO))

    # Reconfiguring must not stack handlers.
    shutdown_logger()
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT)
    handlers = []
    if log_file_path:
        log_dir = os.path.dirname(log_file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file_path, encoding='utf-8'))
    if log_to_console:
        handlers.append(TqdmLoggingHandler())

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def shutdown_logger() -> None:
    """Flush, close and detach the package handlers."""
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.flush()
        handler.close()
        logger.removeHandler(handler)
