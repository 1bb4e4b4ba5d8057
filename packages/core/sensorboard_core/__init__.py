"""Core app services for settings and logging."""

from .config import AppConfig, SettingsGate, config_path, load_config, save_config
from .logging_setup import JsonFormatter, configure_logging, get_logger, install_crash_hooks, install_loop_exception_handler

__all__ = [
    "AppConfig",
    "JsonFormatter",
    "SettingsGate",
    "config_path",
    "configure_logging",
    "get_logger",
    "install_crash_hooks",
    "install_loop_exception_handler",
    "load_config",
    "save_config",
]
