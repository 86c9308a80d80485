# logging_config.py
"""
Logging setup for the API server and the scheduled jobs.

Output goes to stdout and to a log file. The level comes from LOG_LEVEL
(default INFO).
"""
import logging
import sys
from pathlib import Path
from typing import Optional

import config

LOG_LEVEL_MAP = {
     "DEBUG": logging.DEBUG,
     "INFO": logging.INFO,
     "WARNING": logging.WARNING,
     "ERROR": logging.ERROR,
     "CRITICAL": logging.CRITICAL,
}


def get_log_level(level_name: Optional[str] = None) -> int:
     """Map a level name (default: LOG_LEVEL) to a logging constant."""
     name = (level_name or config.LOG_LEVEL).upper()
     return LOG_LEVEL_MAP.get(name, logging.INFO)


def setup_logging(log_file: Optional[str] = None, level_name: Optional[str] = None) -> logging.Logger:
     """
     Configure the root logger.

     Args:
          log_file: Path of the log file (default: LOG_FILE). Pass an empty
               string to log to stdout only.
          level_name: Overrides LOG_LEVEL.

     Returns:
          The configured root logger.
     """
     formatter = logging.Formatter(
          fmt="[%(asctime)s] %(name)s - %(levelname)s - %(message)s",
          datefmt="%Y-%m-%d %H:%M:%S",
     )
     level = get_log_level(level_name)

     root_logger = logging.getLogger()
     root_logger.setLevel(level)
     # Drop handlers from a previous call so reconfiguring never duplicates output
     root_logger.handlers.clear()

     stdout_handler = logging.StreamHandler(sys.stdout)
     stdout_handler.setLevel(level)
     stdout_handler.setFormatter(formatter)
     root_logger.addHandler(stdout_handler)

     path = config.LOG_FILE if log_file is None else log_file
     if path:
          log_path = Path(path)
          log_path.parent.mkdir(parents=True, exist_ok=True)
          file_handler = logging.FileHandler(log_path)
          file_handler.setLevel(level)
          file_handler.setFormatter(formatter)
          root_logger.addHandler(file_handler)

     return root_logger
