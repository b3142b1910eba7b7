"""
Registry of detached execs.

Entries are keyed "user-execId" and kept in a JSON file inside ExecPath so a
restarted server still knows what it launched. update() asks an external
probe script about each PID: no output, or output containing "defunct",
means the process is gone.
"""

from __future__ import annotations

import json
import os
import subprocess
import threading
from datetime import datetime
from typing import Callable, Optional

REGISTRY_FILE = "longRunning.json"
PROBE_SCRIPT = "checkLrp.sh"
DEAD_MARKER = "defunct"


def run(cmd: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)


class LongRunningProcess:
    def __init__(self, user: str, exec_id: str, pid: int, started: Optional[str] = None):
        self.user = user
        self.exec_id = exec_id
        self.pid = pid
        self.started = started or datetime.now().strftime("%Y-%m-%dT%H:%M:%S")

    @property
    def key(self) -> str:
        return f"{self.user}-{self.exec_id}"

    def as_dict(self) -> dict:
        return {"User": self.user, "ExecId": self.exec_id, "PID": self.pid, "Started": self.started}

    @classmethod
    def from_dict(cls, d: dict) -> "LongRunningProcess":
        return cls(d["User"], d["ExecId"], int(d["PID"]), d.get("Started"))

    def __str__(self):
        return f"User:{self.user} ExecId:{self.exec_id} Run:{self.started} PID:{self.pid}"


class LongRunningManager:
    def __init__(self, exec_path: str = "", file: str = REGISTRY_FILE, script: str = PROBE_SCRIPT,
                 log: Optional[Callable[[str], None]] = None):
        self.enabled = bool(exec_path)
        self.exec_path = os.path.abspath(exec_path) if exec_path else ""
        self.file = os.path.join(self.exec_path, file) if self.enabled else ""
        self.script = script
        self._log = log
        self._lock = threading.Lock()
        self._procs: dict[str, LongRunningProcess] = {}
        # reserved but not yet forked, never stored
        self._pending: dict[str, LongRunningProcess] = {}
        if self.enabled:
            if not os.path.isdir(self.exec_path):
                raise NotADirectoryError(f"LongRunningManager: path {self.exec_path} is not a directory")
            self.load()

    def log(self, msg: str):
        if self._log is not None:
            self._log(msg)

    def __len__(self):
        return len(self._procs)

    def __str__(self):
        if self.enabled:
            return f"File:{self.file}. Script:{self.script}"
        return "Long Running Process Manager is disabled"

    def load(self):
        if not self.enabled:
            return
        try:
            with open(self.file, "r", encoding="utf-8") as f:
                raw = json.load(f) or {}
            procs = {}
            for v in raw.values():
                p = LongRunningProcess.from_dict(v)
                procs[p.key] = p
        except (OSError, ValueError, KeyError, TypeError):
            procs = {}
        self._procs = procs

    def store(self):
        if not self.enabled:
            return
        tmp = self.file + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump({k: v.as_dict() for k, v in self._procs.items()}, f, indent=2)
        os.replace(tmp, self.file)

    def add(self, user: str, exec_id: str, pid: int, commit: bool) -> bool:
        """
        False when user+exec_id is already registered. With commit the entry
        is stored as well. A disabled manager accepts everything.
        """
        if not self.enabled:
            return True
        with self._lock:
            proc = LongRunningProcess(user, exec_id, pid)
            if proc.key in self._procs or proc.key in self._pending:
                return False
            if commit:
                self._procs[proc.key] = proc
                self.log(f"Process added. {proc}")
                self.store()
            return True

    def reserve(self, user: str, exec_id: str) -> Optional[LongRunningProcess]:
        """
        Claim user+exec_id before the process is started. None when it is
        already running or claimed. Follow with register() or release().
        """
        proc = LongRunningProcess(user, exec_id, 0)
        if not self.enabled:
            return proc
        with self._lock:
            if proc.key in self._procs or proc.key in self._pending:
                return None
            self._pending[proc.key] = proc
            return proc

    def register(self, proc: LongRunningProcess, pid: int):
        proc.pid = pid
        if not self.enabled:
            return
        with self._lock:
            if self._pending.get(proc.key) is proc:
                del self._pending[proc.key]
            self._procs[proc.key] = proc
            self.log(f"Process added. {proc}")
            self.store()

    def release(self, proc: LongRunningProcess):
        if not self.enabled:
            return
        with self._lock:
            if self._pending.get(proc.key) is proc:
                del self._pending[proc.key]

    def is_alive(self, pid: int) -> bool:
        cp = run([os.path.join(self.exec_path, self.script), str(pid)])
        out = cp.stdout.strip()
        return out != "" and DEAD_MARKER not in out

    def update(self):
        if not self.enabled:
            return
        with self._lock:
            self.load()
            current = list(self._procs.values())
        dead = []
        for proc in current:
            try:
                alive = self.is_alive(proc.pid)
            except OSError as e:
                self.log(f"LongRunningManager: probe failed for PID:{proc.pid}. {e}")
                continue
            if not alive:
                dead.append(proc)
        if not dead:
            return
        with self._lock:
            for proc in dead:
                if self._procs.get(proc.key) is proc:
                    del self._procs[proc.key]
                    self.log(f"Process PID:{proc.pid} no longer running [{proc.key}]")
            self.store()

    def long_running_map(self) -> dict[str, str]:
        with self._lock:
            return {k: str(v) for k, v in sorted(self._procs.items())}
