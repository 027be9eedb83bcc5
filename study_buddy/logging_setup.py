"""
Study Buddy Matchmaker - Logging Setup

Configures the root logger once per process: stdout always, plus a log
file when LOG_FILE is set.
"""

import logging
import os
import sys

from study_buddy.config import Settings

LOG_FORMAT = '[%(asctime)s] %(levelname)s %(name)s: %(message)s'


def configure_logging(settings: Settings) -> None:
    """Install stdout (and optional file) handlers on the root logger"""
    handlers = [logging.StreamHandler(sys.stdout)]

    if settings.LOG_FILE:
        log_dir = os.path.dirname(settings.LOG_FILE)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(settings.LOG_FILE))

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
