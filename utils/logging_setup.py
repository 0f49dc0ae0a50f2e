"""
utils.logging_setup: Colored console logging for evaluation runs
"""
import logging
import sys
from typing import Optional

# Libraries that are chatty at DEBUG level
NOISY_LOGGERS = ("PIL", "torch", "torchvision", "transformers", "matplotlib", "urllib3")

CONSOLE_FORMAT = "[%(asctime)s] %(levelname)s %(message)s"
DETAILED_FORMAT = "[%(asctime)s] %(levelname)s [%(name)s:%(lineno)d] %(message)s"


class ColoredFormatter(logging.Formatter):
    """Formatter that wraps the level name in ANSI colors."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, fmt: str, datefmt: Optional[str] = None, use_color: bool = True):
        super().__init__(fmt, datefmt=datefmt)
        self.use_color = use_color

    def format(self, record):
        levelname = record.levelname
        if self.use_color and levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            # other handlers must see the plain level name
            record.levelname = levelname


def configure_logger(
    verbose: int = 0,
    log_file: Optional[str] = None,
    use_color: Optional[bool] = None,
) -> None:
    """
    Configure the root logger for console (and optional file) output.

    Args:
        verbose: 0 = INFO, 1 = DEBUG, 2+ = DEBUG with logger names and
            third-party debug output
        log_file: Optional path of a log file that always receives DEBUG
        use_color: Force colors on/off; by default colors are used on a TTY
    """
    console_level = logging.INFO if verbose == 0 else logging.DEBUG
    if use_color is None:
        use_color = sys.stdout.isatty()

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(ColoredFormatter(
        DETAILED_FORMAT if verbose >= 2 else CONSOLE_FORMAT,
        datefmt="%H:%M:%S",
        use_color=use_color,
    ))
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(DETAILED_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root_logger.addHandler(file_handler)
        logging.info("Logging to file: %s", log_file)

    if verbose < 2:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.debug("Logging configured with verbosity level %d", verbose)
