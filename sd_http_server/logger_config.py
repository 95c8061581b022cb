import logging
import sys
from pathlib import Path

from sd_http_server import config

LOGGER_NAME = "sd_http_server"
DIAG_LOGGER_NAME = LOGGER_NAME + ".diag"


def setup_logger(name: str = LOGGER_NAME):
    # Handlers live on the top-level logger; children propagate to it
    root_logger = logging.getLogger(LOGGER_NAME)
    if not root_logger.handlers:
        logs_dir = Path(config.LOG_DIR)
        logs_dir.mkdir(exist_ok=True, parents=True)

        root_logger.setLevel(logging.DEBUG)

        # Create formatters
        file_formatter = logging.Formatter(
            '%(asctime)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        )
        console_formatter = logging.Formatter(
            '%(asctime)s - %(levelname)s - %(message)s'
        )

        # File handler (for detailed logging)
        file_handler = logging.FileHandler(logs_dir / "sd_http_server.log")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(file_formatter)

        # Console handler (for basic logging)
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(console_formatter)

        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)

    return logging.getLogger(name)


def setup_diag_logger():
    """Line-oriented operator console used by the debug listing and retention notices."""
    return setup_logger(DIAG_LOGGER_NAME)
