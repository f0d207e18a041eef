"""
Logging configuration for bandbot.

Scannable CLI output: HH:MM:SS timestamp, a coloured component tag and the
message. Components map to child loggers of ``bandbot`` (``bandbot.backtest``,
``bandbot.optimizer``, ...).
"""
import logging
import os
import sys
from datetime import datetime
from typing import Optional


class Colors:
    RESET = "\033[0m"
    DIM = "\033[2m"

    BACKTEST = "\033[48;5;22m\033[97m"    # Dark green bg, white text
    OPTIMIZER = "\033[48;5;208m\033[30m"  # Orange bg, black text
    API = "\033[44m\033[97m"              # Blue bg, white text
    INDICATORS = "\033[46m\033[30m"       # Cyan bg, black text
    STARTUP = "\033[42m\033[30m"          # Green bg, black text

    WARNING = "\033[43m\033[30m"
    ERROR = "\033[41m\033[97m"


class CLIFormatter(logging.Formatter):
    """Formatter producing ``12:00:01  OPTIM  message`` lines."""

    COMPONENT_COLORS = {
        'backtest': Colors.BACKTEST,
        'optimizer': Colors.OPTIMIZER,
        'api': Colors.API,
        'indicators': Colors.INDICATORS,
        'startup': Colors.STARTUP,
    }

    PREFIXES = {
        'backtest': ' BTEST ',
        'optimizer': ' OPTIM ',
        'api': ' API ',
        'indicators': ' IND ',
        'startup': ' START ',
        'bandbot': ' APP ',
    }

    LEVEL_COLORS = {
        'WARNING': Colors.WARNING,
        'ERROR': Colors.ERROR,
        'CRITICAL': Colors.ERROR,
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record):
        component = record.name.split('.')[-1]
        prefix = self.PREFIXES.get(component, f' {component.upper()[:5]} ')
        timestamp = datetime.now().strftime("%H:%M:%S")
        msg = record.getMessage()
        if record.exc_info:
            msg = f"{msg}\n{self.formatException(record.exc_info)}"

        if not self.use_colors:
            return f"{timestamp} [{prefix.strip()}] {record.levelname}: {msg}"

        color = self.COMPONENT_COLORS.get(component, '')
        level_color = self.LEVEL_COLORS.get(record.levelname)
        if level_color:
            return f"{Colors.DIM}{timestamp}{Colors.RESET} {color}{prefix}{Colors.RESET} {level_color} {msg} {Colors.RESET}"
        return f"{Colors.DIM}{timestamp}{Colors.RESET} {color}{prefix}{Colors.RESET} {msg}"


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Initialize application logging.

    Args:
        level: Minimum log level ('DEBUG', 'INFO', 'WARNING', 'ERROR').
               Defaults to the LOG_LEVEL env var or 'INFO'.

    Returns:
        Root ``bandbot`` logger
    """
    if level is None:
        level = os.environ.get('LOG_LEVEL', 'INFO')

    log_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger('bandbot')
    root.setLevel(log_level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CLIFormatter(use_colors=sys.stdout.isatty()))
    handler.setLevel(log_level)
    root.addHandler(handler)
    root.propagate = False

    return root


def get_logger(component: str) -> logging.Logger:
    """Get a logger for a specific component."""
    return logging.getLogger(f'bandbot.{component}')
