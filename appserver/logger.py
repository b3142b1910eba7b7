"""
Queued log writer.

log() hands the message to a bounded queue and a single background thread
writes it as "YYYY/MM/DD HH:MM:SS msg". The file name comes from a mask with
%y %m %d %H %M %S tokens, so a mask like "server-%y-%m-%d.log" rolls the file
every day. With no path or no mask the logger is console-only.
"""

from __future__ import annotations

import os
import queue
import sys
import threading
import time
from datetime import datetime

QUEUE_SIZE = 20
CLOSE_WAIT_SECONDS = 2.0


def derive_file_name(mask: str, t: datetime) -> str:
    return (
        mask.replace("%y", f"{t.year:04d}")
        .replace("%m", f"{t.month:02d}")
        .replace("%d", f"{t.day:02d}")
        .replace("%H", f"{t.hour:02d}")
        .replace("%M", f"{t.minute:02d}")
        .replace("%S", f"{t.second:02d}")
    )


def build_log_line(msg: str, t: datetime) -> str:
    return f"{t:%Y/%m/%d %H:%M:%S} {msg}\n"


class LogDirError(Exception):
    pass


class Logger:
    def __init__(self, path: str = "", file_name_mask: str = "", monitor_seconds: int = 0,
                 console_out: bool = False, verbose: bool = False):
        self.path = path
        self.file_name_mask = file_name_mask
        self.monitor_seconds = monitor_seconds
        self.console_out = console_out
        self.verbose_log = verbose
        self._file = None
        self._file_name = ""
        self._next_check = 0.0
        self._submit_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._queue: queue.Queue = queue.Queue(maxsize=QUEUE_SIZE)
        self._thread = None

        if not path or not file_name_mask:
            self._sealed = True
            return

        self._sealed = False
        if not os.path.exists(path):
            raise LogDirError(f"log directory '{path}' does not exist")
        if not os.path.isdir(path):
            raise LogDirError(f"log directory '{path}' is not a directory")
        self._open(datetime.now())
        self._thread = threading.Thread(target=self._drain, name="log-writer", daemon=True)
        self._thread.start()

    def _open(self, t: datetime):
        self._file_name = derive_file_name(self.file_name_mask, t)
        self._file = open(os.path.join(self.path, self._file_name), "a", encoding="utf-8", errors="backslashreplace")
        self._next_check = time.monotonic() + max(self.monitor_seconds, 0)

    def _roll_if_needed(self, t: datetime):
        if time.monotonic() < self._next_check:
            return
        self._next_check = time.monotonic() + max(self.monitor_seconds, 0)
        if derive_file_name(self.file_name_mask, t) != self._file_name:
            self._file.close()
            self._open(t)

    def _drain(self):
        while True:
            msg = self._queue.get()
            if msg is None:
                break
            t = datetime.now()
            line = build_log_line(msg, t)
            with self._write_lock:
                if self._file is None:
                    sys.stderr.write(line)
                    continue
                self._roll_if_needed(t)
                self._file.write(line)
                self._file.flush()
            if self.console_out:
                sys.stderr.write(line)

    def log(self, msg: str):
        with self._submit_lock:
            if self._sealed:
                sys.stdout.write(build_log_line(msg, datetime.now()))
                return
            self._queue.put(msg)

    def verbose(self, msg: str):
        if self.verbose_log:
            self.log(msg)

    def is_open(self) -> bool:
        return self._file is not None

    def log_file_name(self) -> str:
        if not self._file_name:
            return self.file_name_mask
        return self._file_name

    def log_file_path(self) -> str:
        if not self._file_name:
            return ""
        return os.path.join(self.path, self._file_name)

    def close(self):
        with self._submit_lock:
            if self._sealed:
                return
            self._sealed = True
        # sentinel goes in behind every queued record
        self._queue.put(None)
        if self._thread is not None:
            self._thread.join(timeout=CLOSE_WAIT_SECONDS)
        with self._write_lock:
            if self._file is not None:
                self._file.close()
                self._file = None
