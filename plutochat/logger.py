"""Logging configuration and setup."""
import logging
import sys
from colorama import Fore, Style, init

init(autoreset=True)

# Third-party loggers that are chatty at DEBUG
NOISY_LOGGERS = ("websockets", "urllib3")


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level name"""

    COLORS = {
        'DEBUG': Fore.CYAN,
        'INFO': Fore.GREEN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.RED + Style.BRIGHT,
    }

    def format(self, record):
        # Color a copy so file handlers sharing the record stay plain
        record = logging.makeLogRecord(record.__dict__)
        log_color = self.COLORS.get(record.levelname, '')
        record.levelname = f"{log_color}{record.levelname}{Style.RESET_ALL}"
        return super().format(record)


def setup_logger(config: 'Config') -> logging.Logger:
    """Install console and optional file handlers on the root logger"""
    root_logger = logging.getLogger()
    level = getattr(logging, config.logging.level)
    root_logger.setLevel(level)

    for handler in list(root_logger.handlers):
        if getattr(handler, "_plutochat", False):
            root_logger.removeHandler(handler)

    if config.logging.console_output:
        # stderr keeps stdout free for chat output
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(ColoredFormatter(config.logging.format))
        console_handler._plutochat = True
        root_logger.addHandler(console_handler)

    if config.logging.log_file:
        config.logging.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(config.logging.log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(config.logging.format))
        file_handler._plutochat = True
        root_logger.addHandler(file_handler)
        # The file captures DEBUG even when the console is quieter
        root_logger.setLevel(logging.DEBUG)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))

    return root_logger
