"""
HTTP side: a FastAPI app with one catch-all route that hands every request to
the Dispatcher, and the uvicorn runner the CLI waits on.
"""

from __future__ import annotations

import errno
import os
import queue
import socket
import threading
import time
from email.utils import formatdate
from typing import Optional
from urllib.parse import parse_qs

import uvicorn
from fastapi import FastAPI, Request
from fastapi import Response as HttpResponse
from starlette.concurrency import run_in_threadpool

from .config import Config
from .dispatch import ActionEvent, Dispatcher
from .mime_types import lookup_content_type
from .response import Response

HOST = "0.0.0.0"
METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD"]
SHUTDOWN_PAUSE = 0.5

EXIT_OK = 0
EXIT_STARTUP = 1
EXIT_PORT_IN_USE = 10


def to_http(resp: Response, config: Config) -> HttpResponse:
    # header order is fixed: length, type, date, server
    headers = [
        ("Content-Length", str(resp.content_length())),
        ("Content-Type", lookup_content_type(resp.mime_tag, config.content_type_charset)),
        ("Date", formatdate(usegmt=True)),
        ("Server", config.server_name),
    ]
    out = HttpResponse(content=resp.content, status_code=resp.status)
    out.raw_headers = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in headers]
    return out


def create_app(dispatcher: Dispatcher) -> FastAPI:
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.api_route("/{full_path:path}", methods=METHODS)
    async def catch_all(full_path: str, request: Request):
        body = await request.body()
        query = parse_qs(request.url.query, keep_blank_values=True)
        headers = {k: v for k, v in request.headers.items()}
        resp, config = await run_in_threadpool(
            dispatcher.serve, request.method, request.url.path, query, headers, body
        )
        return to_http(resp, config)

    return app


def port_in_use(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            s.bind((HOST, port))
        except OSError as e:
            return e.errno == errno.EADDRINUSE
    return False


def start_server(app: FastAPI, port: int) -> tuple[uvicorn.Server, threading.Thread]:
    config = uvicorn.Config(
        app,
        host=HOST,
        port=port,
        server_header=False,
        date_header=False,
        access_log=False,
        log_level="warning",
    )
    server = uvicorn.Server(config)
    thread = threading.Thread(target=server.run, name="http-server", daemon=True)
    thread.start()
    return server, thread


def wait_for_action(actions: queue.Queue, thread: threading.Thread, poll: float = 1.0) -> Optional[ActionEvent]:
    """Blocks until an exit/restart is posted. None when the server thread died."""
    while True:
        try:
            return actions.get(timeout=poll)
        except queue.Empty:
            if not thread.is_alive():
                return None


def shutdown(dispatcher: Dispatcher, rc: int):
    time.sleep(SHUTDOWN_PAUSE)
    dispatcher.logger.close()
    time.sleep(SHUTDOWN_PAUSE)
    os._exit(rc)


def run_server(dispatcher: Dispatcher) -> int:
    config = dispatcher.config
    log = dispatcher.logger.log
    if port_in_use(config.port):
        log(f"Server port {config.port_string()} is already in use")
        return EXIT_PORT_IN_USE
    _, thread = start_server(create_app(dispatcher), config.port)
    log(f"Server {config.server_name} started on port {config.port_string()}")
    event = wait_for_action(dispatcher.actions, thread)
    if event is None:
        log("Server stopped unexpectedly")
        dispatcher.logger.close()
        return EXIT_STARTUP
    log(f"Server {event.action}. RC:{event.rc} {event.msg}")
    shutdown(dispatcher, event.rc)
    return event.rc
