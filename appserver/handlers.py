"""
Request handlers. Each one takes what it needs (usually a RequestContext)
and returns a Response; failures are raised as ControllerError and turned
into JSON error bodies by the dispatcher.
"""

from __future__ import annotations

import os
import resource
import tempfile
import time
from datetime import datetime, timezone
from typing import Optional

from .config import ADMIN_USER, Config, ExecSpec
from .errors import ControllerError
from .logger import Logger
from .long_running import LongRunningManager
from .projection import (
    build_tree,
    list_directories,
    list_directories_as_json,
    list_files,
    list_files_as_json,
    tree_as_json,
)
from .request_context import LOC_PARAM, PATH_PARAM, USER_PARAM, RequestContext, is_within
from .response import Response, to_json
from .run_command import append_log, build_command, run_detached, run_sync

OS_INFO_EXEC = "free"


def read_bytes(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise ControllerError("File could not be read", 422, f"Read {path} failed. {e}")


def _template(config: Config, ctx: Optional[RequestContext], path: str, content: bytes) -> bytes:
    if ctx is None or not config.should_template(path):
        return content
    text = content.decode("utf-8", errors="replace")
    env = config.template_data_plus(ctx.env())
    env.update(time_map()["time"])
    return config.substitute_from_map(text, env).encode("utf-8")


# ---- static ----

def static_file(config: Config, segments: list[str], ctx: Optional[RequestContext] = None) -> Response:
    if not segments:
        raise ControllerError("Resource not found", 404, "Static request with no path")
    root = config.static_path(segments[0])
    if root is None:
        raise ControllerError("Resource not found", 404, f"Static path '{segments[0]}' is not defined")
    path = os.path.normpath(os.path.join(root, *segments[1:]))
    if not is_within(root, path):
        raise ControllerError("Forbidden", 403, f"Static file {path} is outside {root}")
    return serve_static(config, path, ctx)


def serve_static(config: Config, path: str, ctx: Optional[RequestContext] = None) -> Response:
    if not os.path.exists(path):
        raise ControllerError("File not found", 404, f"Static file {path} not found")
    if os.path.isdir(path):
        raise ControllerError("Is a directory", 403, f"Static file {path} is a directory")
    content = _template(config, ctx, path, read_bytes(path))
    return Response(200, content, os.path.basename(path))


def home_page(config: Config, ctx: RequestContext) -> Response:
    if not config.has_static_web_data:
        raise ControllerError("Resource not found", 404, "No StaticWebData so no home page")
    return serve_static(config, config.home_page, ctx)


# ---- user files ----

def read_file(ctx: RequestContext) -> Response:
    path = ctx.user_loc_name_path(as_thumbnail=ctx.get_query_as_bool("thumbnail"))
    if not os.path.exists(path):
        raise ControllerError("File not found", 404, f"File {path} not found")
    if os.path.isdir(path):
        raise ControllerError("File not found", 404, f"File {path} is a directory")
    return Response(200, read_bytes(path), os.path.basename(path))


def post_file(ctx: RequestContext) -> Response:
    path = ctx.user_loc_name_path()
    parent = os.path.dirname(path)
    if not os.path.isdir(parent):
        raise ControllerError("Path not found", 400, f"Parent directory {parent} does not exist")
    if os.path.isdir(path):
        raise ControllerError("Is a directory", 400, f"Cannot write file. {path} is a directory")
    existed = os.path.exists(path)
    fd, tmp = tempfile.mkstemp(prefix=".upload-", dir=parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(ctx.body)
        os.replace(tmp, path)
    except OSError as e:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise ControllerError("File could not be written", 500, f"Write {path} failed. {e}")
    if existed:
        return Response.with_cause(200, "File updated")
    return Response.with_cause(201, "File created")


def delete_file(ctx: RequestContext) -> Response:
    path = ctx.user_loc_name_path()
    if not os.path.exists(path):
        raise ControllerError("File not found", 404, f"File {path} not found")
    if os.path.isdir(path):
        raise ControllerError("Is a directory", 403, f"Cannot delete. {path} is a directory")
    try:
        os.remove(path)
    except OSError as e:
        raise ControllerError("File could not be deleted", 500, f"Delete {path} failed. {e}")
    return Response.with_cause(200, "File deleted")


def _location_dir(ctx: RequestContext) -> str:
    path = ctx.user_loc_dir()
    if not os.path.exists(path):
        raise ControllerError("Dir not found", 404, f"Dir {path} not found")
    if not os.path.isdir(path):
        raise ControllerError("Is NOT a directory", 403, f"{path} is NOT a directory")
    return path


def dir_list(ctx: RequestContext, files: bool = True) -> Response:
    path = _location_dir(ctx)
    ffilter = ctx.config.files_filter
    user = ctx.get_optional_param(USER_PARAM)
    loc = ctx.get_optional_param(LOC_PARAM)
    if files:
        index = None
        if ctx.get_query_as_string("index", ""):
            index = ctx.get_query_as_int("index", 0)
        sub = ctx.decoded(PATH_PARAM) if ctx.has_param(PATH_PARAM) else None
        body = list_files_as_json(user, loc, sub, list_files(path, ffilter), index)
    else:
        body = list_directories_as_json(user, loc, list_directories(path, ffilter))
    return Response(200, body)


def tree(ctx: RequestContext) -> Response:
    path = _location_dir(ctx)
    body = tree_as_json(ctx.get_optional_param(USER_PARAM), ctx.get_optional_param(LOC_PARAM), build_tree(path))
    return Response(200, body)


# ---- exec ----

def exec_command(ctx: RequestContext, spec: ExecSpec, exec_id: str, lrm: LongRunningManager,
                 log=None) -> Response:
    """
    Run `spec` with the request env. Detached execs are registered with the
    long running manager and answered straight away with their PID.
    """
    config = ctx.config
    user = ctx.get_optional_param(USER_PARAM, ADMIN_USER)
    env = ctx.env()

    if spec.detached:
        proc = lrm.reserve(user, exec_id)
        if proc is None:
            raise ControllerError("Exec already running", 409, f"User:{user} Exec:{exec_id} is already running")
        try:
            cmd, cwd = build_command(spec, config.exec_path, env, exec_id)
            pid = run_detached(cmd, cwd)
        except Exception:
            lrm.release(proc)
            raise
        lrm.register(proc, pid)
        if log is not None:
            log(f"Exec: {exec_id} detached PID:{pid}")
        return Response.json({"error": False, "pid": pid, "id": exec_id})

    cmd, cwd = build_command(spec, config.exec_path, env, exec_id)
    cp = run_sync(cmd, cwd)
    log_dir = config.exec_log_dir(spec)
    append_log(log_dir, config.substitute_from_map(spec.std_out_path, env), cp.stdout)
    append_log(log_dir, config.substitute_from_map(spec.std_err_path, env), cp.stderr)
    if spec.std_out_type:
        status = 200 if cp.returncode == 0 else spec.nz_status()
        return Response(status, cp.stdout.encode("utf-8"), spec.std_out_type)
    return Response.from_exec(exec_id, cp.returncode, cp.stdout, cp.stderr, spec.nz_status())


# ---- server ----

def fmt_duration(seconds: float) -> str:
    secs = int(seconds)
    h, secs = divmod(secs, 3600)
    m, secs = divmod(secs, 60)
    return f"{h:02d}:{m:02d}:{secs:02d}"


def fmt_alloc(n: int) -> str:
    return f"{n // 1024 // 1024} MiB ({n} B)"


def memory_stats() -> dict[str, str]:
    out = {"Alloc": "", "TotalAlloc": "", "Sys": ""}
    page = os.sysconf("SC_PAGE_SIZE") if hasattr(os, "sysconf") else 4096
    try:
        with open("/proc/self/statm", "r") as f:
            vms, rss = (int(x) for x in f.read().split()[:2])
        out["Alloc"] = fmt_alloc(rss * page)
        out["Sys"] = fmt_alloc(vms * page)
    except (OSError, ValueError):
        pass
    out["TotalAlloc"] = fmt_alloc(resource.getrusage(resource.RUSAGE_SELF).ru_maxrss * 1024)
    return out


def os_info(config: Config, log=None) -> str:
    spec = config.data.execs.get(OS_INFO_EXEC)
    if spec is None or not config.exec_path:
        return ""
    try:
        cmd, cwd = build_command(spec, config.exec_path, config.user_env(""), OS_INFO_EXEC)
        cp = run_sync(cmd, cwd)
    except ControllerError as e:
        if log is not None:
            log(f"Get System status failed: {e.log}")
        return ""
    if cp.returncode != 0:
        return ""
    return cp.stdout


def server_status(config: Config, logger: Logger, lrm: LongRunningManager, up_since: float,
                  reload_in: int) -> Response:
    if lrm.enabled:
        lrm.update()
    status = {
        "ConfigName": config.display_name,
        "UpSince": time.strftime("%a %b %e %H:%M:%S %Y", time.localtime(up_since)),
        "UpTime": fmt_duration(time.time() - up_since),
        "Reload Config in": f"{reload_in} seconds",
    }
    status.update(memory_stats())
    status["Processes"] = lrm.long_running_map()
    status["OS"] = os_info(config, logger.log)
    status["Log_Dir"] = config.log_data_path()
    status["Log_File"] = logger.log_file_name()
    status = {k: v for k, v in status.items() if v}
    return Response(200, to_json({"error": False, "status": status}))


def time_map(t: Optional[datetime] = None) -> dict:
    t = t or datetime.now(timezone.utc).astimezone()
    mon = t.strftime("%B")
    return {
        "time": {
            "millis": int(t.timestamp() * 1000),
            "year": t.year,
            "monthDay": f"{mon}:{t.day:02d}",
            "month": t.month,
            "dom": t.day,
            "mon": mon,
            "time3": t.strftime("%H:%M:%S"),
            "time2": t.strftime("%H:%M"),
            "timestamp": t.isoformat(timespec="seconds"),
        }
    }


def server_time() -> Response:
    return Response.json(time_map()).quiet()


def server_users(config: Config) -> Response:
    users = [{"id": u, "name": config.data.users[u].name} for u in config.user_names()]
    return Response.json({"users": users})


def server_log(logger: Logger, ctx: RequestContext) -> Response:
    path = logger.log_file_path()
    if not path or not os.path.isfile(path):
        raise ControllerError("No log file", 404, "Logger is console only")
    offset = ctx.get_query_as_int("offset", 0)
    with open(path, "rb") as f:
        f.seek(max(0, offset))
        data = f.read()
    return Response(200, data, "log").quiet()


def favicon(config: Config) -> Response:
    path = config.data.favicon_ico_path
    if path:
        path = os.path.abspath(config.substitute_from_map(path))
    elif config.has_static_web_data:
        path = config.static_file("favicon.ico")
    if not path or not os.path.isfile(path):
        raise ControllerError("Resource not found", 404, "favicon.ico is not available")
    return Response(200, read_bytes(path), "ico")
