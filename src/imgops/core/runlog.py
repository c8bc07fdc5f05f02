"""Per-run build log.

A BuildLog is created once per build run and handed to every component
that reports progress. It wraps a dedicated, non-propagating stdlib logger
so two runs in the same process never share handlers, and writes one line
per event to an append-only session file:

    [2024-05-01 10:15:02] [Info] Provisioning rg-lab-customimage-job5

Console rendering is not done here; the CLI attaches its own handler.
"""

from __future__ import annotations

import itertools
import logging
from pathlib import Path
from typing import Iterable

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LEVEL_LABELS = {
    logging.DEBUG: "Debug",
    logging.INFO: "Info",
    SUCCESS: "Success",
    logging.WARNING: "Warning",
    logging.ERROR: "Error",
    logging.CRITICAL: "Error",
}

_run_ids = itertools.count(1)


class RunLogFormatter(logging.Formatter):
    """Format records as `[<timestamp>] [<Level>] <message>`."""

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        label = LEVEL_LABELS.get(record.levelno, record.levelname.title())
        return f"[{self.formatTime(record, self.datefmt)}] [{label}] {record.getMessage()}"


def log_file_path(log_dir: Path, run_stamp: str) -> Path:
    """Return the session log path for a run."""
    return Path(log_dir) / f"imgops-build-{run_stamp}.log"


class BuildLog:
    """Logger instance scoped to a single build run."""

    def __init__(
        self,
        name: str | None = None,
        *,
        handlers: Iterable[logging.Handler] = (),
        path: Path | None = None,
    ):
        self.name = name or f"imgops.run.{next(_run_ids)}"
        self.path = path
        self.logger = logging.getLogger(self.name)
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False
        for handler in handlers:
            self.add_handler(handler)

    @classmethod
    def open(
        cls,
        log_dir: Path,
        run_stamp: str,
        *,
        handlers: Iterable[logging.Handler] = (),
    ) -> BuildLog:
        """Create a run log that appends to `<log_dir>/imgops-build-<stamp>.log`."""
        path = log_file_path(log_dir, run_stamp)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.INFO)
        return cls(
            f"imgops.run.{run_stamp}.{next(_run_ids)}",
            handlers=[file_handler, *handlers],
            path=path,
        )

    def add_handler(self, handler: logging.Handler) -> None:
        if handler.formatter is None:
            handler.setFormatter(RunLogFormatter())
        self.logger.addHandler(handler)

    def info(self, msg: str) -> None:
        self.logger.info(msg)

    def warning(self, msg: str) -> None:
        self.logger.warning(msg)

    def error(self, msg: str) -> None:
        self.logger.error(msg)

    def success(self, msg: str) -> None:
        self.logger.log(SUCCESS, msg)

    def debug(self, msg: str) -> None:
        self.logger.debug(msg)

    def close(self) -> None:
        """Flush and detach all handlers."""
        for handler in list(self.logger.handlers):
            handler.flush()
            handler.close()
            self.logger.removeHandler(handler)

    def __enter__(self) -> BuildLog:
        return self

    def __exit__(self, *exc) -> None:
        self.close()
