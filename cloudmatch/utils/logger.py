"""
Logging setup for cloudmatch

Two audiences read the logs. The terminal only gets what the user should
see: warnings, errors and records explicitly marked with ``console_info``.
The optional rotating log file gets everything at the configured level,
including the request/response traces written when service debugging is on.

Those traces contain Set-Cookie headers, so every handler installed here
masks session cookie values before a record is written anywhere.
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Optional
import colorama
from colorama import Fore, Back, Style


# Initialize colorama for Windows compatibility
colorama.init()

# Libraries whose DEBUG/INFO chatter is not useful to us
QUIET_LOGGERS = ('urllib3', 'requests', 'PIL', 'qrcode', 'asyncio')

FILE_FORMAT = '%(asctime)s | %(name)-28s | %(levelname)-8s | %(message)s'

# Cookie names that carry the login session
_SECRET_COOKIE_PATTERN = re.compile(r'\b(MUSIC_U|MUSIC_A|__csrf)=([^;,\s\'"]+)')


class SessionTokenFilter(logging.Filter):
    """Mask session cookie values in log messages"""

    def filter(self, record):
        message = record.getMessage()
        masked = _SECRET_COOKIE_PATTERN.sub(r'\1=***', message)
        if masked != message:
            record.msg = masked
            record.args = ()
        return True


class ConsoleMessageFilter(logging.Filter):
    """Let through only the records meant for the person at the terminal"""

    def filter(self, record):
        if record.levelno >= logging.WARNING:
            return True
        return bool(getattr(record, 'console_output', False))


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors warnings and errors"""

    LEVEL_COLORS = {
        logging.DEBUG: Fore.CYAN,
        logging.INFO: Fore.GREEN,
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Fore.RED + Back.WHITE + Style.BRIGHT,
    }

    def __init__(self, fmt: Optional[str] = None, use_colors: bool = True):
        super().__init__(fmt or '%(message)s')
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        # INFO stays uncolored so console_info output reads like normal CLI text
        if not self.use_colors or record.levelno < logging.WARNING:
            return text
        color = self.LEVEL_COLORS.get(record.levelno, '')
        return f"{color}{text}{Style.RESET_ALL}"


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    console_output: bool = True,
    colored_output: bool = True,
    max_size: str = "10MB",
    backup_count: int = 3
) -> None:
    """
    Install the console and file handlers on the root logger

    Calling it again replaces the handlers from the previous call.

    Args:
        level: Level for the log file (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path of the rotating log file, None for console only
        console_output: Show user-facing messages on stdout
        colored_output: Color warnings and errors on the console
        max_size: Rotate the log file at this size, e.g. "10MB"
        backup_count: Rotated files to keep
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    redact = SessionTokenFilter()

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.addFilter(redact)
        console_handler.addFilter(ConsoleMessageFilter())
        console_handler.setFormatter(ColoredFormatter(use_colors=colored_output))
        root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=parse_size(max_size),
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
        file_handler.addFilter(redact)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger('cloudmatch').debug(
        f"Logging configured (level={level}, console={console_output}, file={log_file})"
    )


def get_current_log_file() -> Optional[Path]:
    """Path of the active rotating log file, or None when logging to console only"""
    for handler in logging.getLogger().handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            return Path(handler.baseFilename)
    return None


def parse_size(size_str: str) -> int:
    """
    Convert a size such as "10MB" or "1.5 GB" to bytes

    Raises:
        ValueError: If the string is not a number followed by B, KB, MB, GB or TB
    """
    match = re.fullmatch(r'(\d+(?:\.\d+)?)\s*([KMGT]?B)', size_str.strip().upper())
    if not match:
        raise ValueError(f"Invalid size format: {size_str}")

    number, unit = match.groups()
    exponent = 'BKMGT'.index(unit[0]) if len(unit) == 2 else 0
    return int(float(number) * 1024 ** exponent)


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger with a ``console_info`` shortcut

    ``logger.console_info(msg)`` logs at INFO and marks the record for the
    console, which otherwise only shows warnings and errors.
    """
    logger = logging.getLogger(name)

    def console_info(message: str):
        logger.info(message, extra={'console_output': True})

    logger.console_info = console_info
    return logger


def configure_from_settings(settings=None) -> None:
    """Configure logging from the ``logging`` section of the settings"""
    if settings is None:
        from ..config.settings import get_settings
        settings = get_settings()

    log_file = settings.logging.file
    if log_file and not Path(log_file).expanduser().is_absolute():
        log_file = settings.get_config_directory() / log_file

    setup_logging(
        level=settings.logging.level,
        log_file=str(Path(log_file).expanduser()) if log_file else None,
        console_output=settings.logging.console_output,
        colored_output=settings.logging.colored_output,
        max_size=settings.logging.max_size,
        backup_count=settings.logging.backup_count
    )
