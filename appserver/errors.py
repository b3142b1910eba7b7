"""
Error types shared by the config loader, the request context and the handlers.

Every error carries the HTTP status to answer with, a short message for the
client and a longer line for the log.
"""

from __future__ import annotations

from http import HTTPStatus

STATUS_MARKER = "status:"
LOG_MARKER = "log:"


def status_text(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return ""


class AppError(Exception):
    def __init__(self, message: str, status: int = 500, log: str = ""):
        super().__init__(message)
        self.message = message
        self.status = status
        self.log = log or message

    @classmethod
    def from_string(cls, text: str, fallback: int = 404) -> "AppError":
        """
        Build an error from a plain message such as
        "File missing status:404 log:could not stat /x".
        Unparseable status markers fall back to `fallback`.
        """
        status = fallback
        log = ""
        msg = text
        i = msg.find(LOG_MARKER)
        if i >= 0:
            log = msg[i + len(LOG_MARKER):].strip()
            msg = msg[:i]
        i = msg.find(STATUS_MARKER)
        if i >= 0:
            digits = msg[i + len(STATUS_MARKER):].strip().split(" ", 1)[0]
            try:
                status = int(digits)
            except ValueError:
                status = fallback
            msg = msg[:i]
        msg = msg.strip()
        return cls(msg, status, log or msg)

    def as_map(self) -> dict:
        return {
            "error": True,
            "status": self.status,
            "msg": status_text(self.status),
            "cause": self.message,
        }

    def __str__(self):
        return f"{self.status}: {self.message}"


class ConfigError(AppError):
    pass


class ControllerError(AppError):
    pass


class ConfigLoadError(AppError):
    """Config could not be parsed at all. No snapshot exists."""

    def __init__(self, message: str, log: str = ""):
        super().__init__(message, 500, log)
