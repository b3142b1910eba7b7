"""
Request dispatch.

The Dispatcher owns the current Config snapshot. Every request captures the
snapshot once, runs the inline reload check, then walks the matcher table in
order and calls the first handler that fits. Exit and restart requests are
posted to the action queue that the main loop waits on.
"""

from __future__ import annotations

import queue
import threading
import time
import traceback
from dataclasses import dataclass
from typing import Callable, Optional

from . import handlers
from .config import ADMIN_USER, Config, load_config
from .errors import AppError, ConfigLoadError, ControllerError
from .logger import Logger
from .long_running import LongRunningManager
from .matcher import UrlMatcher, check_unique, split_url
from .request_context import (
    EXEC_PARAM,
    LOC_PARAM,
    NAME_PARAM,
    PATH_PARAM,
    SCRIPT_PARAM,
    USER_PARAM,
    RequestContext,
)
from .response import Response

ACTION_QUEUE_SIZE = 10
EXIT_RC = 11
RESTART_RC = 23

FAST_FILE_ROOT = "ff"
FAST_FILE_KEYS = (USER_PARAM, LOC_PARAM, PATH_PARAM, NAME_PARAM)

RESERVED_ROOTS = {
    "ping", "isup", "server", "exit", "files", "paths", "exec", "script", "static", "favicon.ico",
    FAST_FILE_ROOT,
}


@dataclass
class ActionEvent:
    action: str
    rc: int
    msg: str


def _matchers() -> list[tuple[UrlMatcher, str]]:
    """(matcher, handler name) in dispatch order. First match wins."""
    table = [
        (UrlMatcher("/exec/user/*/exec/*"), "exec"),
        (UrlMatcher("/files/user/*/loc/*/path/*"), "list_files"),
        (UrlMatcher("/files/user/*/loc/*"), "list_files"),
        (UrlMatcher("/paths/user/*/loc/*"), "list_paths"),
        (UrlMatcher("/files/user/*/loc/*/tree"), "tree"),
        (UrlMatcher("/files/user/*/loc/*/path/*/name/*"), "read_file"),
        (UrlMatcher("/files/user/*/loc/*/name/*"), "read_file"),
        (UrlMatcher("/files/user/*/loc/*/path/*/name/*", "POST"), "post_file"),
        (UrlMatcher("/files/user/*/loc/*/name/*", "POST"), "post_file"),
        (UrlMatcher("/files/user/*/loc/*/path/*/name/*", "DELETE"), "delete_file"),
        (UrlMatcher("/files/user/*/loc/*/name/*", "DELETE"), "delete_file"),
        (UrlMatcher("/files/loc/*/name/*"), "admin_file"),
        (UrlMatcher("/script/*"), "script"),
        (UrlMatcher("/server/restart"), "restart"),
        (UrlMatcher("/exit"), "exit"),
        (UrlMatcher("/ping"), "ping"),
        (UrlMatcher("/isup", should_log=False), "isup"),
        (UrlMatcher("/server/status"), "status"),
        (UrlMatcher("/server/time", should_log=False), "time"),
        (UrlMatcher("/server/users"), "users"),
        (UrlMatcher("/server/log", should_log=False), "log"),
        (UrlMatcher("/favicon.ico", should_log=False), "favicon"),
        (UrlMatcher("/server/config"), "config"),
    ]
    check_unique([m for m, _ in table])
    return table


def fast_file_params(parts: list[str], url: str) -> dict[str, str]:
    """
    /ff/user/<u>/loc/<l>[/path/<p>]/name/<n> as key/value pairs. A key with
    no value is a bad request; unknown keys or no user, loc and name is 404.
    """
    pairs = parts[1:]
    if len(pairs) % 2:
        raise ControllerError("Get File Error", 400, f"Invalid request:{url}")
    params = dict(zip(pairs[0::2], pairs[1::2]))
    required = (USER_PARAM, LOC_PARAM, NAME_PARAM)
    if any(k not in FAST_FILE_KEYS for k in params) or any(k not in params for k in required):
        raise ControllerError("Get File Error", 404, f"Invalid path or name:{url}")
    return params


class Dispatcher:
    def __init__(self, config: Config, logger: Logger, lrm: Optional[LongRunningManager] = None,
                 actions: Optional[queue.Queue] = None,
                 loader: Callable[..., tuple] = load_config):
        self._config = config
        self._lock = threading.Lock()
        self.logger = logger
        self.lrm = lrm if lrm is not None else LongRunningManager("", log=logger.log)
        self.actions = actions if actions is not None else queue.Queue(maxsize=ACTION_QUEUE_SIZE)
        self.loader = loader
        self.up_since = time.time()
        self.matchers = _matchers()

    @property
    def config(self) -> Config:
        with self._lock:
            return self._config

    # ---- reload ----

    def reload_config(self, current: Config) -> bool:
        """
        Load a fresh snapshot and swap it in. On failure every problem is
        logged and `current` stays in place.
        """
        try:
            fresh, errors = self.loader(current.config_name, current.module_name)
        except ConfigLoadError as e:
            self.logger.log(f"Config reload failed. {e.log}")
            return False
        if len(errors):
            for err in errors:
                self.logger.log(f"Config Error: {err}")
            self.logger.log(f"Config reload failed. {len(errors)} error(s) in {current.config_name}")
            return False
        with self._lock:
            self._config = fresh
        self.logger.log(f"Config reloaded from {fresh.config_name}")
        return True

    def _check_reload(self, config: Config) -> Config:
        if not config.is_time_to_reload_config():
            return config
        if self.reload_config(config):
            return self.config
        config.reset_time_to_reload_config()
        return config

    # ---- actions ----

    def post_action(self, action: str, rc: int, msg: str):
        try:
            self.actions.put_nowait(ActionEvent(action, rc, msg))
        except queue.Full:
            self.logger.log(f"Action queue is full. Dropped {action} rc:{rc}")

    # ---- dispatch ----

    def dispatch(self, method: str, url: str, query: Optional[dict] = None, headers: Optional[dict] = None,
                 body: bytes = b"") -> Response:
        return self.serve(method, url, query, headers, body)[0]

    def serve(self, method: str, url: str, query: Optional[dict] = None, headers: Optional[dict] = None,
              body: bytes = b"") -> tuple[Response, Config]:
        """The response plus the Config snapshot it was produced under."""
        config = self._check_reload(self.config)
        parts, is_absolute = split_url(url)
        ctx = RequestContext(config, query=query, headers=headers, body=body)
        should_log = True
        try:
            resp = None
            if not parts:
                if method == "GET":
                    resp = handlers.home_page(config, ctx)
            elif parts[0] == FAST_FILE_ROOT:
                if method == "GET":
                    self.logger.log(f"Req: {method} {url}")
                    params = fast_file_params(parts, url)
                    resp = handlers.read_file(ctx.with_params(params))
            elif parts[0] == "static":
                if method == "GET":
                    resp = handlers.static_file(config, parts, ctx)
            elif len(parts) == 1 and parts[0] not in RESERVED_ROOTS and config.has_static_web_data:
                if method == "GET":
                    resp = handlers.static_file(config, ["static", parts[0]], ctx)
            elif parts[0] not in RESERVED_ROOTS and config.static_path(parts[0]) is not None:
                if method == "GET":
                    resp = handlers.static_file(config, parts, ctx)
            else:
                for matcher, name in self.matchers:
                    params, ok = matcher.match(parts, method, is_absolute)
                    if ok:
                        should_log = matcher.should_log
                        if should_log:
                            self.logger.log(f"Req: {method} {url}")
                            self.logger.verbose(f"Req: params {params} query {query}")
                        resp = self._handle(name, ctx.with_params(params), config)
                        break
            if resp is None:
                raise ControllerError("Resource not found", 404, f"No handler for {method} {url}")
        except AppError as e:
            resp = Response.from_error(e)
        except Exception as e:
            detail = traceback.format_exc()
            err = AppError("Internal error", config.panic_response_code, f"{type(e).__name__}: {e}\n{detail}")
            resp = Response.from_error(err)
        self.log_response(resp, should_log)
        return resp, config

    def _handle(self, name: str, ctx: RequestContext, config: Config) -> Response:
        if name == "exec":
            exec_id = ctx.get_param(EXEC_PARAM)
            return handlers.exec_command(ctx, ctx.user_exec_info(), exec_id, self.lrm, self.logger.log)
        if name == "list_files":
            return handlers.dir_list(ctx, True)
        if name == "list_paths":
            return handlers.dir_list(ctx, False)
        if name == "tree":
            return handlers.tree(ctx)
        if name == "read_file":
            return handlers.read_file(ctx)
        if name == "post_file":
            return handlers.post_file(ctx)
        if name == "delete_file":
            return handlers.delete_file(ctx)
        if name == "admin_file":
            return handlers.read_file(ctx.as_admin())
        if name == "script":
            exec_id = ctx.get_param(SCRIPT_PARAM)
            if config.has_user(ADMIN_USER):
                ctx.as_admin()
            return handlers.exec_command(ctx, config.global_exec(exec_id), exec_id, self.lrm, self.logger.log)
        if name == "restart":
            rc = ctx.get_query_as_int("rc", RESTART_RC)
            self.post_action("restart", rc, "Restart Requested")
            return Response.json({"Status": "RESTARTED"}, 202)
        if name == "exit":
            rc = ctx.get_query_as_int("rc", EXIT_RC)
            self.post_action("exit", rc, "Exit Requested")
            return Response.with_cause(202, f"[{rc}] Exit Requested")
        if name == "ping":
            return Response.with_cause(200, "Ping")
        if name == "isup":
            return Response.with_cause(200, "ServerIsUp").quiet()
        if name == "status":
            return handlers.server_status(config, self.logger, self.lrm, self.up_since,
                                          config.time_to_reload_seconds())
        if name == "time":
            return handlers.server_time()
        if name == "users":
            return handlers.server_users(config)
        if name == "log":
            return handlers.server_log(self.logger, ctx)
        if name == "favicon":
            return handlers.favicon(config)
        if name == "config":
            if not self.reload_config(config):
                raise ControllerError("Config reload failed", 417, f"Reload of {config.config_name} failed")
            return Response.with_cause(200, "Config Reloaded")
        raise ControllerError("Resource not found", 404, f"Handler {name} is not defined")

    def log_response(self, resp: Response, should_log: bool = True):
        if resp.suppress_log and not resp.has_errors:
            return
        if resp.has_errors:
            self.logger.log(f"Resp: Error: Status:{resp.status}: '{resp.content_limit()}'")
            if resp.logged and "\n" in resp.logged:
                self.logger.log(resp.logged)
        elif should_log and resp.should_log:
            self.logger.log(f"Resp: Status:{resp.status} Len:{resp.content_length()} Type:{resp.mime_tag}")
