"""
Hand written JSON for trees and directory listings.

Clients parse these byte for byte, so key order and the omission of empty
user/loc values are fixed here rather than left to json.dumps on a dict.
Only scalar values go through json.dumps, for quoting.
"""

from __future__ import annotations

import json
import os
from typing import Optional

from .request_context import encode_value

TREE_ROOT_NAME = "fs"


def _q(s: str) -> str:
    # names that are not UTF-8 on disk show U+FFFD, encName keeps the real bytes
    s = s.encode("utf-8", "surrogateescape").decode("utf-8", "replace")
    return json.dumps(s, ensure_ascii=False)


class TreeDirNode:
    def __init__(self, name: str):
        self.name = name
        self.subs: list[TreeDirNode] = []

    def __len__(self):
        return len(self.subs)

    def find(self, name: str) -> Optional["TreeDirNode"]:
        for s in self.subs:
            if s.name == name:
                return s
        return None

    def add_path(self, path: str):
        names = [n for n in path.replace(os.sep, "/").split("/") if n]
        if any(n.startswith(".") for n in names):
            return
        node = self
        for n in names:
            sub = node.find(n)
            if sub is None:
                sub = TreeDirNode(n)
                node.subs.append(sub)
            node = sub

    def to_json(self) -> str:
        if not self.subs:
            return '{"name":' + _q(self.name) + "}"
        return '{"name":' + _q(self.name) + ',"subs":[' + ",".join(s.to_json() for s in self.subs) + "]}"


def is_hidden(name: str) -> bool:
    return name.startswith(".") or name.startswith("_")


def keep_file(name: str, files_filter: list[str]) -> bool:
    """True unless the extension is on the deny-list."""
    if not files_filter:
        return True
    ext = os.path.splitext(name)[1].lower()
    return ext not in files_filter


def json_header(user: str, loc: str) -> str:
    out = '"error":false'
    if user:
        out += ',"user":' + _q(user)
    if loc:
        out += ',"loc":' + _q(loc)
    return out


def name_json(name: str) -> str:
    return '{"name":' + _q(name) + ',"encName":' + _q(encode_value(name)) + "}"


def build_tree(root_dir: str) -> TreeDirNode:
    root = TreeDirNode(TREE_ROOT_NAME)
    for dirpath, dirnames, _ in os.walk(root_dir):
        dirnames[:] = sorted(d for d in dirnames if not is_hidden(d))
        rel = os.path.relpath(dirpath, root_dir)
        if rel != ".":
            root.add_path(rel)
    return root


def tree_as_json(user: str, loc: str, root: TreeDirNode) -> bytes:
    return ("{" + json_header(user, loc) + ',"tree":' + root.to_json() + "}").encode("utf-8")


def list_files(dir_path: str, files_filter: list[str]) -> list[tuple[str, int]]:
    """Regular, non-filtered files sorted by name."""
    out = []
    with os.scandir(dir_path) as it:
        for e in it:
            if e.is_file() and not e.name.startswith(".") and keep_file(e.name, files_filter):
                out.append((e.name, e.stat().st_size))
    out.sort()
    return out


def list_files_as_json(user: str, loc: str, path: Optional[str], files: list[tuple[str, int]],
                       index: Optional[int] = None) -> bytes:
    """
    Files come out in reverse order. With `index` only that one entry is
    written, clamped to the last one.
    """
    if path:
        path_json = name_json(path)
    else:
        path_json = "null"
    if index is not None and files:
        index = max(0, min(index, len(files) - 1))
        chosen = [files[index]]
    else:
        chosen = list(reversed(files))
    entries = ",".join('{"size":' + str(size) + ',"name":' + name_json(name) + "}" for name, size in chosen)
    body = "{" + json_header(user, loc) + ',"path":' + path_json + ',"files":[' + entries + "]}"
    return body.encode("utf-8")


def list_directories(dir_path: str, files_filter: list[str]) -> list[str]:
    """Relative paths of sub directories holding at least one kept file."""
    found = []

    def rec(path: str):
        try:
            entries = sorted(os.scandir(path), key=lambda e: e.name)
        except OSError:
            return
        has_files = any(e.is_file() and keep_file(e.name, files_filter) for e in entries)
        if has_files and path != dir_path:
            found.append(os.path.relpath(path, dir_path).replace(os.sep, "/"))
        for e in entries:
            if e.is_dir() and not is_hidden(e.name):
                rec(e.path)

    rec(dir_path)
    return found


def list_directories_as_json(user: str, loc: str, paths: list[str]) -> bytes:
    body = "{" + json_header(user, loc) + ',"paths":[' + ",".join(name_json(p) for p in paths) + "]}"
    return body.encode("utf-8")
