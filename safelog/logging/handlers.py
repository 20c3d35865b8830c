"""Logging handlers used for file output."""

from __future__ import annotations

import os
from contextlib import suppress
from io import TextIOWrapper
from logging.handlers import WatchedFileHandler

LOG_FILE_MODE = 0o600
LOG_DIR_MODE = 0o700


class SecureWatchedFileHandler(WatchedFileHandler):
    """Reopen-on-rotate file handler that keeps log files owner-only.

    Masked entries can still carry user ids and client addresses, so the file
    and any directory created for it are not world readable.
    """

    def __init__(self, filename: str, mode: str = "a", encoding: str | None = "utf-8",
                 delay: bool = True) -> None:
        directory = os.path.dirname(os.path.abspath(filename))
        if not os.path.isdir(directory):
            os.makedirs(directory, mode=LOG_DIR_MODE, exist_ok=True)
        super().__init__(filename, mode=mode, encoding=encoding, delay=delay)

    def _open(self) -> TextIOWrapper:  # noqa: D401
        stream = super()._open()
        with suppress(OSError):
            os.chmod(self.baseFilename, LOG_FILE_MODE)
        return stream
