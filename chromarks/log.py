from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass

from rich.logging import RichHandler

# Third-party loggers that flood DEBUG output (PNG chunk traces, inotify events).
NOISY_LOGGERS = ("PIL", "watchdog")


@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    no_color: bool = False

    @classmethod
    def from_settings(cls, settings) -> "LogConfig":
        return cls(level=settings.log_level, no_color=settings.no_color)


def setup_logging(cfg: LogConfig) -> None:
    """Route all logging to stderr, through rich when it is an interactive terminal.

    Parsing and favicon refreshes happen on executor threads, so records carry
    the thread name.
    """
    level = getattr(logging, cfg.level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)

    colored = not (cfg.no_color or os.getenv("NO_COLOR") is not None) and sys.stderr.isatty()
    if colored:
        handler: logging.Handler = RichHandler(rich_tracebacks=True, show_time=False, show_path=False)
        handler.setFormatter(logging.Formatter("[%(threadName)s] %(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s [%(threadName)s]: %(message)s"))
    handler.setLevel(level)
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
