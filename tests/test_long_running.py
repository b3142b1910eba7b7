import json

import pytest

from appserver.long_running import LongRunningManager

from .conftest import write_script

ALIVE = "#!/bin/sh\necho S\n"
DEAD = "#!/bin/sh\n"
ZOMBIE = "#!/bin/sh\necho '12 ? 00:00:00 x <defunct>'\n"


@pytest.fixture
def exec_dir(tmp_path):
    d = tmp_path / "exec"
    d.mkdir()
    write_script(d / "alive.sh", ALIVE)
    write_script(d / "dead.sh", DEAD)
    write_script(d / "zombie.sh", ZOMBIE)
    return d


def test_disabled_manager_accepts_everything():
    lrm = LongRunningManager("")
    assert not lrm.enabled
    assert lrm.add("u", "x", 1, True)
    assert lrm.add("u", "x", 1, True)
    assert lrm.long_running_map() == {}


def test_not_a_directory(tmp_path):
    with pytest.raises(NotADirectoryError):
        LongRunningManager(str(tmp_path / "missing"))


def test_duplicate_rejected_and_stored(exec_dir):
    lrm = LongRunningManager(str(exec_dir), script="alive.sh")
    assert lrm.add("bob", "job", 0, False)
    assert lrm.add("bob", "job", 1234, True)
    assert not lrm.add("bob", "job", 999, True)
    stored = json.loads((exec_dir / "longRunning.json").read_text())
    assert stored["bob-job"]["PID"] == 1234
    assert lrm.long_running_map()["bob-job"].startswith("User:bob ExecId:job Run:")
    assert lrm.long_running_map()["bob-job"].endswith("PID:1234")


def test_registry_survives_restart(exec_dir):
    LongRunningManager(str(exec_dir)).add("bob", "job", 42, True)
    again = LongRunningManager(str(exec_dir))
    assert len(again) == 1
    assert not again.add("bob", "job", 43, True)


def test_corrupt_registry_starts_empty(exec_dir):
    (exec_dir / "longRunning.json").write_text("[[[")
    assert len(LongRunningManager(str(exec_dir))) == 0


def test_update_keeps_live_processes(exec_dir):
    lrm = LongRunningManager(str(exec_dir), script="alive.sh")
    lrm.add("bob", "job", 42, True)
    lrm.update()
    assert "bob-job" in lrm.long_running_map()


@pytest.mark.parametrize("script", ["dead.sh", "zombie.sh"])
def test_update_removes_dead_processes(exec_dir, script):
    lrm = LongRunningManager(str(exec_dir), script=script)
    lrm.add("bob", "job", 42, True)
    lrm.update()
    assert lrm.long_running_map() == {}
    assert lrm.add("bob", "job", 43, True)
    assert json.loads((exec_dir / "longRunning.json").read_text())["bob-job"]["PID"] == 43


def test_missing_check_script_keeps_entry(exec_dir):
    logged = []
    lrm = LongRunningManager(str(exec_dir), script="no-such-probe.sh", log=logged.append)
    lrm.add("bob", "job", 42, True)
    lrm.update()
    assert "bob-job" in lrm.long_running_map()
    assert any("probe failed" in m for m in logged)


def test_reserve_blocks_second_launch(exec_dir):
    lrm = LongRunningManager(str(exec_dir), script="alive.sh")
    proc = lrm.reserve("bob", "job")
    assert proc is not None
    assert lrm.reserve("bob", "job") is None
    assert not lrm.add("bob", "job", 7, True)
    assert lrm.long_running_map() == {}
    lrm.register(proc, 4321)
    assert lrm.reserve("bob", "job") is None
    assert json.loads((exec_dir / "longRunning.json").read_text())["bob-job"]["PID"] == 4321


def test_release_frees_reservation(exec_dir):
    lrm = LongRunningManager(str(exec_dir))
    proc = lrm.reserve("bob", "job")
    lrm.release(proc)
    assert lrm.reserve("bob", "job") is not None
    assert not (exec_dir / "longRunning.json").exists()
