import json
import os
from datetime import datetime

import pytest

from appserver.pictures import (
    DATA_FILE_NAME,
    FILE_ADD,
    FILE_DEL,
    FILE_NEW,
    PicDir,
    PicPath,
    date_from_name,
    in_a_not_b,
    scan_directory,
    scan_filter,
    thumbnail_name,
    walk_dir,
)


def make_files(root, *names):
    for name in names:
        p = root / name
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(name)


def test_date_from_name():
    assert date_from_name("2019_03_28_15_02_11_x.jpg") == datetime(2019, 3, 28, 15, 2, 11)
    assert date_from_name("holiday.jpg") is None


def test_thumbnail_name():
    t = datetime(2019, 3, 28, 15, 2, 11)
    assert thumbnail_name(t, "a.png") == "2019_03_28_15_02_11_a.png.jpg"


def test_pic_path():
    p = PicPath.from_string("/a/b/c/")
    assert str(p) == "a/b/c"
    assert p.pop() == "c"
    assert p.last() == "b"
    q = p.copy()
    q.push("x")
    assert len(p) == 2 and len(q) == 3


def test_add_find_and_count():
    d = PicDir("root")
    d.add("a.jpg")
    d.add("x/y/b.jpg", "thumb")
    assert len(d) == 2
    sub, f = d.find(PicPath.from_string("x/y/b.jpg"))
    assert sub.N == "y" and f.D == "thumb"
    assert d.find(PicPath.from_string("x/b.jpg")) == (d.find_dir("x"), None)
    assert d.find(PicPath.from_string("q/b.jpg")) == (None, None)


def test_visit_each_file_stops_early():
    d = PicDir("root")
    for n in ("a", "b", "c"):
        d.add(n)
    seen = []
    d.visit_each_file(lambda p, f: seen.append(f.N) or len(seen) < 2)
    assert seen == ["a", "b"]


def test_visit_each_dir():
    d = PicDir("root")
    d.add("x/a")
    d.add("x/y/b")
    dirs = []
    d.visit_each_dir(lambda p, files: dirs.append((str(p), [f.N for f in files])))
    assert dirs == [("", []), ("x", ["a"]), ("x/y", ["b"])]


def test_save_load_short_keys(tmp_path):
    d = PicDir("root")
    d.add("x/a.jpg", "t")
    f = tmp_path / "s.json"
    d.save(str(f))
    raw = json.loads(f.read_text())
    assert raw == {"N": "root", "Files": [], "Dirs": [{"N": "x", "Files": [{"N": "a.jpg", "D": "t"}], "Dirs": []}]}
    assert PicDir.load(str(f)) == d


def test_walk_dir_skips_hidden(tmp_path):
    make_files(tmp_path, "a.jpg", "sub/b.jpg", ".cache/c.jpg")
    d = walk_dir(str(tmp_path))
    assert d.N == str(tmp_path)
    assert len(d) == 2
    assert d.find_dir(".cache") is None


def test_in_a_not_b():
    a, b = PicDir("a"), PicDir("b")
    a.add("x/1")
    a.add("2")
    b.add("2")
    missing = []
    in_a_not_b(a, b, lambda p, f: missing.append(str(p)))
    assert missing == ["x/1"]


def test_scan_filter():
    keep = scan_filter([".jpg", ".png"], [".tmp"])
    assert keep("", "a.JPG")
    assert keep("", "b.png")
    assert not keep("", "c.txt")
    assert not keep("", DATA_FILE_NAME)
    keep_all = scan_filter([], [".tmp"])
    assert keep_all("", "c.txt")
    assert not keep_all("", "d.tmp")


def test_scan_first_run_then_diff(tmp_path):
    make_files(tmp_path, "a.jpg", "b.jpg", "sub/c.jpg", "notes.txt")
    first = scan_directory(str(tmp_path), [".jpg"])
    assert first.new_state is None
    assert first.old_state_count == 3
    assert os.path.exists(tmp_path / DATA_FILE_NAME)
    listed = []
    first.list_new_add_del(lambda kind, path: listed.append((kind, path)))
    assert {k for k, _ in listed} == {FILE_NEW}

    os.remove(tmp_path / "b.jpg")
    make_files(tmp_path, "sub/d.jpg", "e.jpg")
    second = scan_directory(str(tmp_path), [".jpg"])
    assert second.old_state_count == 3
    assert second.new_state_count == 4
    assert second.need_to_delete_count == 1
    assert second.need_to_create_count == 2
    assert second.old_state_count - second.need_to_delete_count + second.need_to_create_count == second.new_state_count

    changes = []
    second.list_new_add_del(lambda kind, path: changes.append((kind, path)))
    assert sorted(changes) == [(FILE_ADD, "e.jpg"), (FILE_ADD, "sub/d.jpg"), (FILE_DEL, "b.jpg")]

    second.commit()
    third = scan_directory(str(tmp_path), [".jpg"])
    assert third.need_to_create_count == 0
    assert third.need_to_delete_count == 0


def test_scan_requires_directory(tmp_path):
    with pytest.raises(NotADirectoryError):
        scan_directory(str(tmp_path / "missing"), [])
