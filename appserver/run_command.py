from __future__ import annotations

import os
import subprocess
from pathlib import Path

from .config import ExecSpec, substitute
from .errors import ControllerError


def build_command(spec: ExecSpec, exec_path: str, env: dict, exec_id: str = "") -> tuple[list[str], str]:
    """
    Substitute ${var} in every Cmd entry and resolve Cmd[0] inside exec_path.
    Returns (argv, working dir).
    """
    if not exec_path:
        raise ControllerError("Exec path is undefined", 500, f"Exec:{exec_id} Config has no ExecPath")
    cmd = [substitute(c, env).strip() for c in spec.cmd]
    cmd = [c for c in cmd if c]
    if not cmd:
        raise ControllerError("No command given", 417, f"Exec:{exec_id} Cmd is empty")
    script = os.path.join(exec_path, cmd[0])
    if not os.path.exists(script):
        raise ControllerError("Could not find cmd script", 424, f"Exec:{exec_id} script {script} not found")
    if os.path.isdir(script):
        raise ControllerError("Cmd script is not a file", 424, f"Exec:{exec_id} script {script} is a directory")
    cwd = exec_path
    if spec.dir:
        cwd = os.path.join(exec_path, substitute(spec.dir, env))
    return [script] + cmd[1:], cwd


def run_sync(cmd: list[str], cwd: str) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(cmd, cwd=cwd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
    except OSError as e:
        raise ControllerError("Exec failed", 424, f"Exec {cmd[0]} failed. {e}")


def run_detached(cmd: list[str], cwd: str) -> int:
    try:
        p = subprocess.Popen(
            cmd,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        raise ControllerError("Detached process could not be started", 424, f"Exec {cmd[0]} failed. {e}")
    return p.pid


def append_log(log_dir: str, name: str, text: str):
    if not log_dir or not name or not text:
        return
    try:
        with (Path(log_dir) / name).open("a", encoding="utf-8") as f:
            f.write(text)
    except OSError as e:
        raise ControllerError("Failed to write exec log", 500, f"Exec log {name} could not be written. {e}")
