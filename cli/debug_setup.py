"""Logging setup for CLI"""

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

import settings

DEBUG_LOG_FILE = "keyboard_agent_debug.log"


def setup_logging(console: Console, debug: bool = False) -> None:
    """
    Route log records to the Rich console, plus a debug log file in debug mode

    Args:
        console: Rich console shared with the CLI output
        debug: Whether debug mode is enabled
    """
    root_logger = logging.getLogger()
    level = logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    root_logger.setLevel(level)

    # Clear existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = RichHandler(console=console, show_path=False, rich_tracebacks=debug)
    console_handler.setLevel(level)
    root_logger.addHandler(console_handler)

    if debug:
        log_file = os.path.abspath(DEBUG_LOG_FILE)
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')  # 'a' to append
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        root_logger.addHandler(file_handler)
        logging.getLogger(__name__).info(f"Debug logging enabled - appending to {log_file}")
