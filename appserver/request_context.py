from __future__ import annotations

import base64
import binascii
import os
from typing import Optional

from .config import ADMIN_USER, Config, ExecSpec
from .errors import ControllerError

ENCODED_PREFIX = "ENC:"

USER_PARAM = "user"
LOC_PARAM = "loc"
PATH_PARAM = "path"
NAME_PARAM = "name"
EXEC_PARAM = "exec"
SCRIPT_PARAM = "script"


def encode_value(value: str) -> str:
    if value == "":
        return ""
    return ENCODED_PREFIX + base64.urlsafe_b64encode(value.encode("utf-8", "surrogateescape")).decode("ascii")


def decode_value(value: str) -> str:
    """
    "ENC:<url-safe base64>" gives the decoded text, anything else is returned
    unchanged. Missing padding is tolerated. Bytes that are not UTF-8 come
    back as surrogate escapes, the same way os.listdir hands out such names.
    """
    if not value.startswith(ENCODED_PREFIX):
        return value
    body = value[len(ENCODED_PREFIX):]
    body += "=" * (-len(body) % 4)
    try:
        # standard alphabet clients still send + and /
        raw = base64.b64decode(body.replace("-", "+").replace("_", "/"), validate=True)
        return raw.decode("utf-8", "surrogateescape")
    except binascii.Error:
        raise ControllerError("Invalid encoded value", 400, f"Could not decode '{value}'")


def is_within(root: str, path: str) -> bool:
    root = os.path.normpath(root)
    path = os.path.normpath(path)
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


class RequestContext:
    def __init__(self, config: Config, params: Optional[dict] = None, query: Optional[dict] = None,
                 headers: Optional[dict] = None, body: bytes = b""):
        self.config = config
        self.params = dict(params or {})
        self.query = query or {}
        self.headers = headers or {}
        self.body = body
        self._env = None

    def with_params(self, params: dict) -> "RequestContext":
        self.params.update(params)
        self._env = None
        return self

    def as_admin(self) -> "RequestContext":
        return self.with_params({USER_PARAM: ADMIN_USER})

    # ---- parameters ----

    def has_param(self, key: str) -> bool:
        return key in self.params

    def get_param(self, key: str) -> str:
        if key not in self.params:
            raise ControllerError(f"Missing parameter '{key}'", 400, f"Url parameter '{key}' is missing")
        return self.params[key]

    def get_optional_param(self, key: str, default: str = "") -> str:
        return self.params.get(key, default)

    def get_query_as_string(self, key: str, default: str = "") -> str:
        values = self.query.get(key)
        if not values:
            return default
        if isinstance(values, str):
            return values
        return values[0]

    def get_query_as_bool(self, key: str, default: bool = False) -> bool:
        v = self.get_query_as_string(key, "").strip().lower()
        if v == "":
            return default
        return v in ("true", "yes", "1")

    def get_query_as_int(self, key: str, default: int) -> int:
        try:
            return int(self.get_query_as_string(key, str(default)))
        except ValueError:
            raise ControllerError(f"Invalid query value '{key}'", 400, f"Query {key} must be an integer")

    @property
    def user(self) -> str:
        return self.get_param(USER_PARAM)

    @property
    def location(self) -> str:
        return self.get_param(LOC_PARAM)

    def decoded(self, key: str) -> str:
        return decode_value(self.get_param(key))

    # ---- substitution map ----

    def env(self) -> dict[str, str]:
        if self._env is None:
            m = self.config.user_env(self.params.get(USER_PARAM, ""))
            for k, v in self.headers.items():
                if v:
                    m[k] = v
            for k, v in self.params.items():
                try:
                    m[k] = decode_value(v)
                except ControllerError:
                    m[k] = v
            for k in self.query:
                v = self.get_query_as_string(k, "")
                if v:
                    m[k] = v
            self._env = m
        return self._env

    # ---- resolution ----

    def user_loc_path(self) -> str:
        return self.config.user_loc_path(self.user, self.location)

    def user_loc_dir(self) -> str:
        """Location root plus the optional path parameter."""
        root = self.user_loc_path()
        if not self.has_param(PATH_PARAM):
            return root
        return self._safe(root, os.path.join(root, self.decoded(PATH_PARAM)))

    def user_loc_name_path(self, as_thumbnail: bool = False) -> str:
        root = self.user_loc_path()
        base = self.user_loc_dir()
        name = self.decoded(NAME_PARAM)
        if as_thumbnail:
            name = self.config.convert_to_thumbnail(name)
        return self._safe(root, os.path.join(base, name))

    def user_exec_info(self) -> ExecSpec:
        return self.config.exec_info(self.user, self.get_param(EXEC_PARAM))

    def _safe(self, root: str, path: str) -> str:
        path = os.path.normpath(path)
        if not is_within(root, path):
            raise ControllerError("Invalid path", 404, f"Path '{path}' is outside '{root}'")
        return path
