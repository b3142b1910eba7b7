"""
Config loading and the snapshot handed to every request.

The JSON file keeps the PascalCase keys of existing deployments, the
pydantic models below map them onto python names. load_config() parses the
file, resolves every user location to an absolute directory and collects
all problems in an ErrorList instead of stopping at the first one.
"""

from __future__ import annotations

import json
import os
import re
import time
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError, ConfigLoadError

MODULE_NAME = "appserver"
CONFIG_EXT = ".json"
ABSOLUTE_PATH_PREFIX = "***"
STATIC_PATH_NAME = "static"
ADMIN_USER = "admin"

DEFAULT_RELOAD_SECONDS = 3600
DEFAULT_PORT = 8080
DEFAULT_THUMBNAIL_TRIM = [20, 4]
DEFAULT_NZ_STATUS = 206

SUBST_RE = re.compile(r"\$\{([^}]+)\}")


class ErrorList:
    def __init__(self):
        self.errors: list[str] = []

    def add(self, msg: str):
        self.errors.append(msg)

    def count(self) -> int:
        return len(self.errors)

    def __len__(self):
        return len(self.errors)

    def __iter__(self):
        return iter(self.errors)

    def __str__(self):
        return "\n".join(f"Config Error: {e}" for e in self.errors)


def substitute(template: str, *envs: dict) -> str:
    """
    Replace ${name} with the first env that has `name`. Unknown names are
    left as they are.
    """

    def repl(m):
        name = m.group(1)
        for env in envs:
            if env and name in env:
                return str(env[name])
        return m.group(0)

    return SUBST_RE.sub(repl, template)


def flatten_map(m, prefix: str = "") -> dict[str, str]:
    out: dict[str, str] = {}

    def rec(path, v):
        if isinstance(v, dict):
            for k, vv in v.items():
                rec(path + [str(k)], vv)
        elif isinstance(v, list):
            for i, vv in enumerate(v):
                rec(path + [str(i)], vv)
        else:
            if isinstance(v, bool):
                v = "true" if v else "false"
            out[".".join(path)] = "" if v is None else str(v)

    rec([prefix] if prefix else [], m)
    return out


def time_env(t: Optional[datetime] = None) -> dict[str, str]:
    t = t or datetime.now()
    return {
        "year": f"{t.year}",
        "month": f"{t.month:02d}",
        "day": f"{t.day:02d}",
        "hour": f"{t.hour:02d}",
        "min": f"{t.minute:02d}",
        "sec": f"{t.second:02d}",
        "doy": f"{t.timetuple().tm_yday:02d}",
        "ms": f"{int(t.timestamp() * 1000)}",
    }


def now_millis() -> int:
    return int(time.time() * 1000)


# ---- file model ----

class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ExecSpec(_Model):
    cmd: list[str] = Field(default_factory=list, alias="Cmd")
    dir: str = Field("", alias="Dir")
    log: str = Field("", alias="Log")
    std_out_path: str = Field("", alias="StdOutPath")
    std_err_path: str = Field("", alias="StdErrPath")
    std_out_type: str = Field("", alias="StdOutType")
    nz_code_returns: int = Field(0, alias="NzCodeReturns")
    detached: bool = Field(False, alias="Detached")
    can_stop: bool = Field(False, alias="CanStop")
    description: str = Field("", alias="Description")

    def nz_status(self) -> int:
        return self.nz_code_returns or DEFAULT_NZ_STATUS


class UserData(_Model):
    name: str = Field("", alias="Name")
    home: str = Field("", alias="Home")
    hidden: bool = Field(False, alias="Hidden")
    locations: dict[str, str] = Field(default_factory=dict, alias="Locations")
    env: dict[str, str] = Field(default_factory=dict, alias="Env")
    # a string value names an entry in the global Execs table
    execs: dict[str, Union[ExecSpec, str]] = Field(default_factory=dict, alias="Execs")


class LogData(_Model):
    path: str = Field("", alias="Path")
    file_name_mask: str = Field("", alias="FileNameMask")
    monitor_seconds: int = Field(0, alias="MonitorSeconds")
    log_level: str = Field("", alias="LogLevel")
    console_out: bool = Field(False, alias="ConsoleOut")


class TemplateStaticFiles(_Model):
    data_file: str = Field("", alias="DataFile")
    files: list[str] = Field(default_factory=list, alias="Files")


class StaticWebData(_Model):
    home_page: str = Field("", validation_alias=AliasChoices("HomePage", "Home"), serialization_alias="HomePage")
    paths: dict[str, str] = Field(default_factory=dict, alias="Paths")
    template_static_files: Optional[TemplateStaticFiles] = Field(None, alias="TemplateStaticFiles")


class ConfigFile(_Model):
    port: int = Field(DEFAULT_PORT, alias="Port")
    server_name: str = Field("", alias="ServerName")
    content_type_charset: str = Field("utf-8", alias="ContentTypeCharset")
    server_data_root: str = Field("", alias="ServerDataRoot")
    reload_config_seconds: int = Field(DEFAULT_RELOAD_SECONDS, alias="ReloadConfigSeconds")
    panic_response_code: int = Field(500, alias="PanicResponseCode")
    files_filter: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("FilesFilter", "FilterFiles"),
        serialization_alias="FilesFilter",
    )
    thumbnail_trim: list[int] = Field(default_factory=lambda: list(DEFAULT_THUMBNAIL_TRIM), alias="ThumbnailTrim")
    log_data: LogData = Field(default_factory=LogData, alias="LogData")
    users: dict[str, UserData] = Field(default_factory=dict, alias="Users")
    execs: dict[str, ExecSpec] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("Execs", "Exec"),
        serialization_alias="Execs",
    )
    static_web_data: Optional[StaticWebData] = Field(None, alias="StaticWebData")
    exec_path: str = Field("", alias="ExecPath")
    env: dict[str, str] = Field(default_factory=dict, alias="Env")
    favicon_ico_path: str = Field("", alias="FaviconIcoPath")


def config_file_name(name: str) -> str:
    if not name:
        name = MODULE_NAME
    if not name.endswith(CONFIG_EXT):
        name = name + CONFIG_EXT
    return os.path.abspath(name)


def resolve_location(root: str, home: str, path: str) -> str:
    path = path.replace("../", "").replace("..", "")
    if path == "":
        return os.path.join(root, home)
    if path.startswith(ABSOLUTE_PATH_PREFIX):
        return path[len(ABSOLUTE_PATH_PREFIX):]
    if path.startswith(root):
        return path
    if not home:
        return os.path.join(root, path)
    return os.path.join(root, home, path)


class Config:
    """Immutable view of one successful (or diagnosed) load."""

    def __init__(self, config_name: str, module_name: str, data: ConfigFile, environment: dict,
                 verbose: bool = False):
        self.config_name = config_name
        self.module_name = module_name
        self.data = data
        self.environment = environment
        self.verbose = verbose
        self.current_path = os.getcwd()
        self.server_data_root = ""
        self.exec_path = ""
        self.log_path = ""
        self.locations: dict[str, dict[str, str]] = {}
        self.locations_created: list[str] = []
        self.has_static_web_data = False
        self.static_paths: dict[str, str] = {}
        self.home_page = ""
        self.template_files: set[str] = set()
        self.template_data: dict[str, str] = {}
        self.is_templating = False
        self.next_reload_millis = 0
        self.reset_time_to_reload_config()

    # ---- plain settings ----

    @property
    def port(self) -> int:
        return self.data.port

    @property
    def server_name(self) -> str:
        return self.data.server_name or self.module_name

    @property
    def content_type_charset(self) -> str:
        return self.data.content_type_charset

    @property
    def files_filter(self) -> list[str]:
        return self.data.files_filter

    @property
    def log_data(self) -> LogData:
        return self.data.log_data

    @property
    def panic_response_code(self) -> int:
        return self.data.panic_response_code

    @property
    def display_name(self) -> str:
        return os.path.basename(self.config_name)

    def port_string(self) -> str:
        return f":{self.data.port}"

    def log_data_path(self) -> str:
        return self.log_path

    # ---- reload countdown ----

    def is_time_to_reload_config(self, now: Optional[int] = None) -> bool:
        return self.next_reload_millis < (now if now is not None else now_millis())

    def reset_time_to_reload_config(self):
        self.next_reload_millis = now_millis() + self.data.reload_config_seconds * 1000

    def time_to_reload_seconds(self) -> int:
        return max(0, round((self.next_reload_millis - now_millis()) / 1000))

    # ---- users ----

    def has_user(self, user: str) -> bool:
        u = user.lower()
        return any(n.lower() == u for n in self.data.users)

    def user_data(self, user: str) -> UserData:
        ud = self.data.users.get(user)
        if ud is None:
            raise ConfigError("Invalid user", 404, f"User={user} not found")
        return ud

    def user_home(self, user: str) -> str:
        return self.user_data(user).home or user

    def user_root(self, user: str) -> str:
        return resolve_location(self.server_data_root, self.user_home(user), "")

    def user_names(self) -> list[str]:
        return sorted(n for n, u in self.data.users.items() if not u.hidden)

    def user_env(self, user: str = "") -> dict[str, str]:
        env = dict(self.environment)
        ud = self.data.users.get(user) if user else None
        if ud is not None:
            env["id"] = user
            env["name"] = ud.name
            env["home"] = ud.home or user
            env.update(ud.env)
            env.update(ud.locations)
        env.update(time_env())
        return env

    def substitute_from_map(self, template: str, env: Optional[dict] = None) -> str:
        return substitute(template, env or {}, self.environment)

    # ---- locations ----

    def user_loc_path(self, user: str, loc: str) -> str:
        self.user_data(user)
        path = self.locations.get(user, {}).get(loc)
        if path is None:
            raise ConfigError("Invalid location", 404, f"User={user} Location={loc} not found")
        return path

    def convert_to_thumbnail(self, name: str) -> str:
        pre, suf = self.data.thumbnail_trim[0], self.data.thumbnail_trim[1]
        if len(name) < pre + suf:
            return name
        return name[pre:len(name) - suf]

    # ---- execs ----

    def exec_info(self, user: str, exec_id: str) -> ExecSpec:
        ud = self.user_data(user)
        spec = ud.execs.get(exec_id)
        if spec is None:
            raise ConfigError("Invalid exec", 404, f"User={user} Exec={exec_id} not found")
        if isinstance(spec, str):
            return self.global_exec(spec)
        return spec

    def global_exec(self, exec_id: str) -> ExecSpec:
        spec = self.data.execs.get(exec_id)
        if spec is None:
            raise ConfigError("Invalid exec", 404, f"Exec={exec_id} not found")
        return spec

    def exec_log_dir(self, spec: ExecSpec) -> str:
        if not spec.log or not self.exec_path:
            return ""
        return os.path.join(os.path.dirname(self.exec_path), spec.log)

    # ---- static web ----

    def static_path(self, name: str) -> Optional[str]:
        if not self.has_static_web_data:
            return None
        return self.static_paths.get(name)

    def static_file(self, name: str) -> str:
        return os.path.join(self.static_paths[STATIC_PATH_NAME], name)

    def should_template(self, path: str) -> bool:
        return self.is_templating and path in self.template_files

    def template_data_plus(self, extra: dict) -> dict:
        m = dict(self.template_data)
        m.update(extra)
        return m

    # ---- editing ----

    def add_user(self, user: str):
        if self.has_user(user):
            raise ValueError(f"user '{user}' already exists")
        self.data.users[user] = UserData(
            name=user[:1].upper() + user[1:],
            locations={"data": "stateData"},
        )

    def as_json(self) -> str:
        return json.dumps(self.data.model_dump(by_alias=True, exclude_none=True), indent=2)

    def save(self):
        tmp = self.config_name + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(self.as_json())
        os.replace(tmp, self.config_name)


# ---- loading ----

def _check_dir(path: str) -> Optional[str]:
    if not os.path.exists(path):
        return f"path [{path}] Not found"
    if not os.path.isdir(path):
        return f"path [{path}] Not a Directory"
    return None


def _validate_static(cfg: Config, swd: StaticWebData, errors: ErrorList) -> bool:
    before = errors.count()
    if not swd.home_page:
        errors.add("StaticWebData 'Home' page is undefined in 'StaticWebData'")
        return False
    if not swd.paths:
        errors.add("StaticWebData 'Paths' is empty. Requires at least 'static'")
        return False
    paths = {}
    for name, value in swd.paths.items():
        p = os.path.abspath(cfg.substitute_from_map(value))
        if not os.path.exists(p):
            errors.add(f"StaticWebData 'Paths[{name}]' [{p}] Not found")
        elif not os.path.isdir(p):
            errors.add(f"StaticWebData 'Paths[{name}]={p}' is not a directory")
        paths[name] = p
    static_path = paths.get(STATIC_PATH_NAME)
    if static_path is None:
        errors.add("StaticWebData 'Paths[static]' was not found")
        return False
    if errors.count() != before:
        return False

    home = os.path.join(static_path, swd.home_page.lstrip("/"))
    if not os.path.exists(home):
        errors.add(f"StaticWebData file '{home}' Not found")
    elif os.path.isdir(home):
        errors.add(f"StaticWebData file '{home}' is a directory")

    template_files = set()
    template_data = {}
    tsf = swd.template_static_files
    if tsf is not None:
        if tsf.data_file:
            f = os.path.join(static_path, tsf.data_file)
            try:
                with open(f, "r", encoding="utf-8") as fh:
                    template_data = flatten_map(json.load(fh))
            except OSError as e:
                errors.add(f"failed to read template data file. Error:{e}")
            except json.JSONDecodeError as e:
                errors.add(f"failed to parse template json file:{f}. Error:{e}")
        if not tsf.files:
            errors.add("No template 'TemplateStaticFiles.Files' have been defined")
        for tf in tsf.files:
            f = os.path.join(static_path, tf)
            if not os.path.exists(f):
                errors.add(f"failed to find template file:{f}")
            elif os.path.isdir(f):
                errors.add(f"template file:{f} is a directory")
            else:
                template_files.add(f)

    if errors.count() != before:
        return False
    cfg.static_paths = paths
    cfg.home_page = home
    cfg.template_files = template_files
    cfg.template_data = template_data
    cfg.is_templating = tsf is not None
    return True


def _validate_exec(cfg: Config, exec_id: str, spec: ExecSpec, errors: ErrorList):
    if not spec.cmd:
        errors.add(f"Exec [{exec_id}] has no Cmd")
        return
    if spec.detached:
        for label, value in (("Log", spec.log), ("StdOutPath", spec.std_out_path),
                             ("StdErrPath", spec.std_err_path), ("StdOutType", spec.std_out_type)):
            if value:
                errors.add(f"Exec [{exec_id}] is detached. Cannot have {label}='{value}'")
        if spec.nz_code_returns:
            errors.add(f"Exec [{exec_id}] is detached. Cannot have NzCodeReturns='{spec.nz_code_returns}'")
        if cfg.exec_path:
            script = os.path.join(cfg.exec_path, spec.cmd[0])
            if not os.path.isfile(script):
                errors.add(f"Exec [{exec_id}] script [{script}] is not a file in ExecPath")
    if spec.log:
        if spec.log.startswith(".."):
            errors.add(f"Exec [{exec_id}] log. Log Dir prefix ../ is invalid")
            return
        log_dir = cfg.exec_log_dir(spec)
        problem = _check_dir(log_dir) if log_dir else "ExecPath is undefined"
        if problem:
            errors.add(f"Exec [{exec_id}] log {problem}")
        if not spec.std_out_path and not spec.std_err_path:
            errors.add(f"Exec [{exec_id}] has a Log entry but no StdOutPath or StdErrPath files are defined")


def _create_location(cfg: Config, user: str, path: str) -> Optional[str]:
    if not path.startswith(cfg.user_root(user)):
        return f"[{path}] could NOT be created. It is not in {cfg.user_root(user)}"
    try:
        os.makedirs(path, exist_ok=True)
    except OSError as e:
        return f"[{path}] could NOT be created. {e}"
    cfg.locations_created.append(f"Created: User[{user}] Path[{path}]")
    return None


def _resolve(cfg: Config, errors: ErrorList, create_dirs: bool):
    data = cfg.data
    env = cfg.user_env("")

    root = os.path.abspath(cfg.substitute_from_map(data.server_data_root, env)) if data.server_data_root else ""
    problem = _check_dir(root) if root else "path is empty"
    if problem:
        errors.add(f"Failed to find ServerDataRoot. Cause:{problem}")
    cfg.server_data_root = root

    if data.log_data.path:
        cfg.log_path = os.path.abspath(cfg.substitute_from_map(data.log_data.path, env))

    if data.static_web_data is not None:
        cfg.has_static_web_data = _validate_static(cfg, data.static_web_data, errors)

    if data.exec_path:
        p = os.path.abspath(cfg.substitute_from_map(data.exec_path, env))
        problem = _check_dir(p)
        if problem:
            errors.add(f"ExecPath {problem}")
        else:
            cfg.exec_path = p

    for exec_id, spec in data.execs.items():
        _validate_exec(cfg, exec_id, spec, errors)

    for user, ud in data.users.items():
        for exec_id, spec in ud.execs.items():
            if isinstance(spec, str):
                if spec not in data.execs:
                    errors.add(f"User [{user}] Exec [{exec_id}] refers to undefined Exec [{spec}]")
            else:
                _validate_exec(cfg, f"{user}.{exec_id}", spec, errors)

        user_env = cfg.user_env(user)
        resolved = {}
        for loc, rel in ud.locations.items():
            path = os.path.abspath(cfg.substitute_from_map(
                resolve_location(root, ud.home or user, rel), user_env))
            problem = _check_dir(path)
            if problem and create_dirs and not os.path.exists(path):
                problem = _create_location(cfg, user, path)
            if problem:
                errors.add(f"User [{user}] Location [{loc}] {problem}")
            resolved[loc] = path
        cfg.locations[user] = resolved


def load_config(config_name: str, module_name: str = MODULE_NAME, create_dirs: bool = False,
                dont_resolve: bool = False, verbose: bool = False) -> tuple[Config, ErrorList]:
    """
    Raises ConfigLoadError when the file cannot be read or parsed. Every
    other problem is appended to the returned ErrorList.
    """
    name = config_file_name(config_name)
    if verbose:
        print(f"Config file:'{name}'")
    try:
        text = Path(name).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigLoadError("Failed to read config data file", f"Failed to read config data file:{name}. Error:{e}")

    environment = dict(os.environ)
    text = substitute(text, environment)
    try:
        raw = json.loads(text)
        data = ConfigFile.model_validate(raw)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ConfigLoadError("Failed to understand the config data",
                              f"Failed to understand the config data in the file:{name}. Error:{e}")

    errors = ErrorList()
    if len(data.thumbnail_trim) < 2:
        errors.add("Config data entry ThumbnailTrim data has less than 2 entries")
        data.thumbnail_trim = list(DEFAULT_THUMBNAIL_TRIM)
    data.files_filter = [f.lower() if f.startswith(".") else "." + f.lower() for f in data.files_filter]
    environment.update(data.env)

    cfg = Config(name, module_name, data, environment, verbose)
    if not dont_resolve:
        _resolve(cfg, errors, create_dirs)
    return cfg, errors
