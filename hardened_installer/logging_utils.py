from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

DEFAULT_LOG_PATH = "/var/log/hardened-installer.log"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
    console_handler: Optional[logging.Handler] = None,
) -> str:
    """Configure the root logger once.

    The live installer environment may not allow writes to /var/log; in that
    case the log goes to ./hardened-installer.log and the caller gets the
    path actually used. A caller-supplied console handler (the TUI passes a
    RichHandler) replaces the default stream handler.
    """

    logger = logging.getLogger()
    logger.setLevel(level)

    if getattr(logger, "_hardened_configured", False):
        return getattr(logger, "_hardened_log_path", log_path)

    handlers: list[logging.Handler] = []

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")

    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        file_handler: logging.Handler = logging.FileHandler(log_path)
        chosen_path = log_path
    except OSError:
        chosen_path = str(Path.cwd() / "hardened-installer.log")
        file_handler = logging.FileHandler(chosen_path)
    file_handler.setFormatter(fmt)
    handlers.append(file_handler)

    if console_handler is not None:
        handlers.append(console_handler)
    elif also_console:
        console = logging.StreamHandler()
        console.setFormatter(fmt)
        handlers.append(console)

    for h in handlers:
        logger.addHandler(h)

    setattr(logger, "_hardened_configured", True)
    setattr(logger, "_hardened_log_path", chosen_path)

    logging.getLogger(__name__).info(
        "Logging initialized (requested=%s, actual=%s)", log_path, chosen_path
    )
    return chosen_path
