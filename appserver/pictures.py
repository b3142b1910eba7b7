"""
Media inventory of a directory tree.

A PicDir snapshot is written to dirScanData.json in the scanned root. The next
scan compares the saved snapshot with the current filesystem and reports the
files that appeared (NeedToCreate) and the ones that went away
(NeedToDelete).
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional

DATA_FILE_NAME = "dirScanData.json"
THUMBNAIL_FORMAT = "%yyy_%m_%d_%H_%M_%S_"
THUMBNAIL_EXT = ".jpg"

FILE_NEW = "new"
FILE_ADD = "add"
FILE_DEL = "del"


def date_from_name(name: str) -> Optional[datetime]:
    """Files named like 2019_03_28_15_02_11_x.jpg carry their own date."""
    digits = re.sub(r"\D", "", name)
    if len(digits) < 14:
        return None
    try:
        t = datetime.strptime(digits[:14], "%Y%m%d%H%M%S")
    except ValueError:
        return None
    if not 1970 <= t.year <= 2100:
        return None
    return t


def thumbnail_name(t: datetime, name: str, fmt: str = THUMBNAIL_FORMAT) -> str:
    s = (
        fmt.replace("%yyy", f"{t.year}")
        .replace("%m", f"{t.month:02d}")
        .replace("%d", f"{t.day:02d}")
        .replace("%H", f"{t.hour:02d}")
        .replace("%M", f"{t.minute:02d}")
        .replace("%S", f"{t.second:02d}")
    )
    return s + name + THUMBNAIL_EXT


class PicPath:
    def __init__(self, parts: Optional[Iterable[str]] = None):
        self.parts: list[str] = list(parts or [])

    @classmethod
    def from_string(cls, s: str) -> "PicPath":
        return cls(p for p in s.strip().split("/") if p)

    def push(self, name: str):
        self.parts.append(name)

    def pop(self) -> str:
        if self.parts:
            return self.parts.pop()
        return ""

    def last(self) -> str:
        return self.parts[-1]

    def copy(self) -> "PicPath":
        return PicPath(self.parts)

    def __len__(self):
        return len(self.parts)

    def __eq__(self, other):
        return isinstance(other, PicPath) and self.parts == other.parts

    def __str__(self):
        return "/".join(self.parts)


@dataclass
class PicFile:
    N: str
    D: str = ""


@dataclass
class PicDir:
    N: str
    Files: list[PicFile] = field(default_factory=list)
    Dirs: list["PicDir"] = field(default_factory=list)

    def find_dir(self, name: str) -> Optional["PicDir"]:
        for d in self.Dirs:
            if d.N == name:
                return d
        return None

    def find_file(self, name: str) -> Optional[PicFile]:
        for f in self.Files:
            if f.N == name:
                return f
        return None

    def find(self, path: PicPath) -> tuple[Optional["PicDir"], Optional[PicFile]]:
        if len(path) == 0:
            return None, None
        d = self
        for name in path.parts[:-1]:
            d = d.find_dir(name)
            if d is None:
                return None, None
        return d, d.find_file(path.last())

    def add(self, path: str, info: str = ""):
        self._add_parts([p for p in path.split("/") if p], info)

    def add_path(self, path: PicPath, info: str = ""):
        self._add_parts(path.parts, info)

    def _add_parts(self, parts: list[str], info: str):
        if not parts:
            return
        if len(parts) == 1:
            self.Files.append(PicFile(parts[0], info))
            return
        sub = self.find_dir(parts[0])
        if sub is None:
            sub = PicDir(parts[0])
            self.Dirs.append(sub)
        sub._add_parts(parts[1:], info)

    def visit_each_file(self, on_file: Callable[[PicPath, PicFile], bool]):
        """Stops early when on_file returns False."""

        def rec(d: PicDir, path: PicPath) -> bool:
            for f in d.Files:
                if not on_file(path, f):
                    return False
            for sub in d.Dirs:
                path.push(sub.N)
                ok = rec(sub, path)
                path.pop()
                if not ok:
                    return False
            return True

        rec(self, PicPath())

    def visit_each_dir(self, on_dir: Callable[[PicPath, list[PicFile]], None]):
        def rec(d: PicDir, path: PicPath):
            on_dir(path, d.Files)
            for sub in d.Dirs:
                path.push(sub.N)
                rec(sub, path)
                path.pop()

        rec(self, PicPath())

    def __len__(self):
        count = 0

        def inc(_p, _f):
            nonlocal count
            count += 1
            return True

        self.visit_each_file(inc)
        return count

    def as_dict(self) -> dict:
        return {
            "N": self.N,
            "Files": [{"N": f.N, "D": f.D} for f in self.Files],
            "Dirs": [d.as_dict() for d in self.Dirs],
        }

    @classmethod
    def from_dict(cls, d: dict) -> "PicDir":
        return cls(
            d.get("N", ""),
            [PicFile(f.get("N", ""), f.get("D", "")) for f in d.get("Files") or []],
            [cls.from_dict(x) for x in d.get("Dirs") or []],
        )

    def save(self, file: str, indent: bool = False):
        tmp = file + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self.as_dict(), f, ensure_ascii=False, indent=2 if indent else None,
                      separators=None if indent else (",", ":"))
        os.replace(tmp, file)

    @classmethod
    def load(cls, file: str) -> "PicDir":
        with open(file, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


def walk_dir(root: str, on_file: Optional[Callable[[str, str], bool]] = None,
             fmt: str = THUMBNAIL_FORMAT) -> PicDir:
    """
    Snapshot `root`. N of the result is the absolute root, every kept file
    gets D set to its thumbnail name. Hidden directories are not entered.
    """
    root = os.path.abspath(root)
    if not os.path.isdir(root):
        raise NotADirectoryError(f"{root} is not a directory")
    top = PicDir(root)
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        rel = os.path.relpath(dirpath, root)
        for name in sorted(filenames):
            path = os.path.join(dirpath, name)
            if on_file is not None and not on_file(path, name):
                continue
            t = date_from_name(name)
            if t is None:
                t = datetime.fromtimestamp(os.path.getmtime(path))
            rel_file = name if rel == "." else f"{rel.replace(os.sep, '/')}/{name}"
            top.add(rel_file, thumbnail_name(t, name, fmt))
    return top


def in_a_not_b(a: PicDir, b: PicDir, cb: Callable[[PicPath, PicFile], None]):
    def visit(path: PicPath, f: PicFile) -> bool:
        full = path.copy()
        full.push(f.N)
        _, found = b.find(full)
        if found is None:
            cb(full, f)
        return True

    a.visit_each_file(visit)


@dataclass
class ScannedData:
    data_file: str
    old_state: Optional[PicDir] = None
    old_state_count: int = 0
    new_state: Optional[PicDir] = None
    new_state_count: int = 0
    need_to_create: Optional[PicDir] = None
    need_to_create_count: int = 0
    need_to_delete: Optional[PicDir] = None
    need_to_delete_count: int = 0

    def commit(self, indent: bool = False):
        state = self.new_state or self.old_state
        if state is None:
            raise ValueError("no scan data to commit")
        state.save(self.data_file, indent)

    def list_new_add_del(self, on_file: Callable[[str, str], None]):
        if self.new_state is None:
            if self.old_state is not None:
                self.old_state.visit_each_file(lambda p, f: on_file(FILE_NEW, _join(p, f)) or True)
            return
        if self.need_to_create is not None:
            self.need_to_create.visit_each_file(lambda p, f: on_file(FILE_ADD, _join(p, f)) or True)
        if self.need_to_delete is not None:
            self.need_to_delete.visit_each_file(lambda p, f: on_file(FILE_DEL, _join(p, f)) or True)


def _join(p: PicPath, f: PicFile) -> str:
    return f"{p}/{f.N}" if len(p) else f.N


def scan_filter(extensions: list[str], files_filter: Optional[list[str]] = None,
                data_file_name: str = DATA_FILE_NAME) -> Callable[[str, str], bool]:
    exts = [e.lower() for e in extensions]
    deny = [e.lower() for e in files_filter or []]

    def keep(_path: str, name: str) -> bool:
        if name == data_file_name:
            return False
        low = name.lower()
        if deny and os.path.splitext(low)[1] in deny:
            return False
        return not exts or any(low.endswith(e) for e in exts)

    return keep


def scan_directory(dir_path: str, extensions: list[str], files_filter: Optional[list[str]] = None,
                   data_file_name: str = DATA_FILE_NAME) -> ScannedData:
    data_dir = os.path.abspath(dir_path)
    if not os.path.isdir(data_dir):
        raise NotADirectoryError(f"{data_dir} is not a directory")
    data_file = os.path.join(data_dir, data_file_name)
    keep = scan_filter(extensions, files_filter, data_file_name)

    if not os.path.exists(data_file):
        snapshot = walk_dir(data_dir, keep)
        snapshot.save(data_file)
        return ScannedData(data_file, old_state=snapshot, old_state_count=len(snapshot))
    if os.path.isdir(data_file):
        raise IsADirectoryError(f"{data_file} is a directory")

    old = PicDir.load(data_file)
    new = walk_dir(data_dir, keep)
    result = ScannedData(
        data_file,
        old_state=old,
        old_state_count=len(old),
        new_state=new,
        new_state_count=len(new),
        need_to_create=PicDir("Added"),
        need_to_delete=PicDir("Deleted"),
    )

    def deleted(path: PicPath, f: PicFile):
        result.need_to_delete.add_path(path, f.D)
        result.need_to_delete_count += 1

    def created(path: PicPath, f: PicFile):
        result.need_to_create.add_path(path, f.D)
        result.need_to_create_count += 1

    in_a_not_b(old, new, deleted)
    in_a_not_b(new, old, created)
    return result
