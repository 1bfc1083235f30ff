"""
Infrastructure module - configuration and logging.
"""

from .config import Settings, load_settings, settings_from_env
from .logging_config import setup_logging, DailyRotatingFileHandler

__all__ = [
    "Settings",
    "load_settings",
    "settings_from_env",
    "setup_logging",
    "DailyRotatingFileHandler",
]
