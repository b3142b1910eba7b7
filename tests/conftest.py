import json
import os
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from appserver.config import load_config
from appserver.dispatch import Dispatcher
from appserver.logger import Logger
from appserver.long_running import LongRunningManager
from appserver.server import create_app

SCRIPTS = {
    "echo.sh": '#!/bin/sh\necho "$@"\n',
    "fail.sh": "#!/bin/sh\necho partial\necho oops >&2\nexit 3\n",
    "sleep.sh": "#!/bin/sh\nsleep 5\n",
    "checkLrp.sh": "#!/bin/sh\nps -o stat= -p \"$1\"\n",
}


def write_script(path: Path, text: str):
    path.write_text(text)
    os.chmod(path, 0o755)


def base_config(root: Path) -> dict:
    return {
        "Port": 18089,
        "ServerName": "TestServer",
        "ServerDataRoot": str(root / "data"),
        "ReloadConfigSeconds": 3600,
        "FilesFilter": [".tmp"],
        "ThumbnailTrim": [3, 4],
        "LogData": {"Path": str(root / "logs"), "FileNameMask": "test-%y-%m-%d.log"},
        "ExecPath": str(root / "exec"),
        "Env": {"greeting": "hello"},
        "Execs": {
            "whoami": {"Cmd": ["echo.sh", "${id}"]},
            "page": {"Cmd": ["echo.sh", "<b>${greeting}</b>"], "StdOutType": "html"},
        },
        "Users": {
            "stuart": {
                "Name": "Stuart",
                "Locations": {"pics": "s-pics", "docs": "s-docs"},
                "Env": {"colour": "blue"},
                "Execs": {
                    "hello": {"Cmd": ["echo.sh", "${greeting}", "${name}", "${colour}"]},
                    "fail": {"Cmd": ["fail.sh"]},
                    "failcode": {"Cmd": ["fail.sh"], "NzCodeReturns": 299},
                    "sleeper": {"Cmd": ["sleep.sh"], "Detached": True},
                    "who": "whoami",
                },
            },
            "admin": {
                "Name": "Admin",
                "Hidden": True,
                "Locations": {"data": "a-data"},
            },
        },
        "StaticWebData": {
            "HomePage": "index.html",
            "Paths": {"static": str(root / "static")},
            "TemplateStaticFiles": {"DataFile": "data.json", "Files": ["page.html"]},
        },
    }


def build_tree(root: Path, overrides: dict = None) -> Path:
    pics = root / "data" / "stuart" / "s-pics"
    (pics / "s-testfolder").mkdir(parents=True)
    (pics / "s-testfolder" / "testdata2.json").write_text('{"Data":"This is the data for 2"}')
    (pics / "s-empty").mkdir()
    (pics / "_hidden").mkdir()
    (pics / "top.json").write_text("{}")
    (root / "data" / "stuart" / "s-docs").mkdir(parents=True)
    admin = root / "data" / "admin" / "a-data"
    admin.mkdir(parents=True)
    (admin / "admin.txt").write_text("admin data")

    static = root / "static"
    static.mkdir()
    (static / "index.html").write_text("<html>home</html>")
    (static / "style.css").write_text("body {}")
    (static / "page.html").write_text("${title} from ${site.name}")
    (static / "data.json").write_text(json.dumps({"title": "Welcome", "site": {"name": "Test"}}))

    (root / "logs").mkdir()
    exec_dir = root / "exec"
    exec_dir.mkdir()
    for name, text in SCRIPTS.items():
        write_script(exec_dir / name, text)

    data = base_config(root)
    if overrides:
        data.update(overrides)
    config_file = root / "config.json"
    config_file.write_text(json.dumps(data, indent=2))
    return config_file


@pytest.fixture
def config_file(tmp_path):
    return build_tree(tmp_path)


@pytest.fixture
def config(config_file):
    cfg, errors = load_config(str(config_file))
    assert len(errors) == 0, str(errors)
    return cfg


@pytest.fixture
def logger(config):
    lg = Logger(config.log_data_path(), config.log_data.file_name_mask)
    yield lg
    lg.close()


@pytest.fixture
def dispatcher(config, logger):
    return Dispatcher(config, logger, LongRunningManager(config.exec_path, log=logger.log))


@pytest.fixture
def client(dispatcher):
    return TestClient(create_app(dispatcher))
