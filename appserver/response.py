from __future__ import annotations

import json
from typing import Optional

from .errors import AppError, status_text

LOG_LIMIT = 150


def to_json(data) -> bytes:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def status_map(status: int, cause: str, error: Optional[bool] = None) -> dict:
    if error is None:
        error = not 200 <= status < 300
    return {"error": error, "status": status, "msg": status_text(status), "cause": cause}


class Response:
    """
    What a handler hands back to the dispatcher. mime_tag is the short form
    ("json", "txt", "x.png"), the Content-Type is resolved when written.
    """

    def __init__(self, status: int = 200, content: bytes = b"", mime_tag: str = "json",
                 should_log: bool = True, suppress_log: bool = False):
        self.status = status
        self.content = content
        self.mime_tag = mime_tag
        self.has_errors = not 200 <= status < 300
        self.should_log = should_log or self.has_errors
        self.suppress_log = suppress_log
        self.logged = ""

    @classmethod
    def json(cls, data, status: int = 200) -> "Response":
        return cls(status, to_json(data))

    @classmethod
    def with_cause(cls, status: int, cause: str) -> "Response":
        return cls(status, to_json(status_map(status, cause)))

    @classmethod
    def from_error(cls, err: AppError) -> "Response":
        resp = cls(err.status, to_json(err.as_map()))
        resp.has_errors = True
        resp.should_log = True
        resp.logged = err.log
        return resp

    @classmethod
    def from_exec(cls, exec_id: str, rc: int, std_out: str, std_err: str, nz_status: int = 206) -> "Response":
        status = 200 if rc == 0 else nz_status
        data = {
            "error": rc != 0,
            "status": status,
            "msg": status_text(status),
            "rc": rc,
            "id": exec_id,
            "stdOut": std_out,
            "stdErr": std_err,
        }
        return cls(status, to_json(data))

    def quiet(self) -> "Response":
        self.suppress_log = True
        return self

    def content_length(self) -> int:
        return len(self.content)

    def content_limit(self, n: int = LOG_LIMIT) -> str:
        text = self.content.decode("utf-8", errors="replace")
        if self.logged and self.logged not in text:
            text = f"{text} | {self.logged}"
        if len(text) > n:
            return text[:n]
        return text

    def __repr__(self):
        return f"Response(status={self.status}, len={len(self.content)}, mime={self.mime_tag})"
