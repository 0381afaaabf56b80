from __future__ import annotations

import logging
import os
import sys
from typing import IO

from rproxy.utils import human

LogLevels = [
    "error",
    "warn",
    "info",
    "debug",
]


class RProxyFormatter(logging.Formatter):
    def __init__(self):
        super().__init__()
        self.with_client = "[%s][%s] %s"
        self.without_client = "[%s] %s"

    default_time_format = "%H:%M:%S"
    default_msec_format = "%s.%03d"

    def format(self, record: logging.LogRecord) -> str:
        time = self.formatTime(record)
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        if client := getattr(record, "client", None):
            client = human.format_address(client)
            return self.with_client % (time, client, message)
        else:
            return self.without_client % (time, message)


class RProxyLogHandler(logging.Handler):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._initiated_in_test = os.environ.get("PYTEST_CURRENT_TEST")

    def filter(self, record: logging.LogRecord) -> bool:
        # We can't remove stale handlers here because that would modify .handlers during iteration!
        return bool(
            super().filter(record)
            and (
                not self._initiated_in_test
                or self._initiated_in_test == os.environ.get("PYTEST_CURRENT_TEST")
            )
        )

    def install(self) -> None:
        if self._initiated_in_test:
            for h in list(logging.getLogger().handlers):
                if (
                    isinstance(h, RProxyLogHandler)
                    and h._initiated_in_test != self._initiated_in_test
                ):
                    h.uninstall()

        logging.getLogger().addHandler(self)

    def uninstall(self) -> None:
        logging.getLogger().removeHandler(self)


class TermLogHandler(RProxyLogHandler):
    """Print log records to the terminal."""

    def __init__(self, out: IO[str] | None = None, verbosity: str = "info"):
        super().__init__()
        self.file: IO[str] = out or sys.stdout
        self.formatter = RProxyFormatter()
        self.set_verbosity(verbosity)

    def set_verbosity(self, verbosity: str) -> None:
        if verbosity not in LogLevels:
            raise ValueError(f"Invalid log verbosity: {verbosity}")
        self.setLevel(verbosity.upper().replace("WARN", "WARNING"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            print(self.format(record), file=self.file)
        except OSError:
            # We cannot print, exit immediately.
            sys.exit(1)
