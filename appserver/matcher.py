"""
URL template matching.

A template such as "/files/user/*/loc/*" is split on "/" and compared part by
part with the request. Each "*" captures the request part under the name of
the literal part in front of it, so the template above turns
"/files/user/bob/loc/pics" into {"user": "bob", "loc": "pics"}.
"""

from __future__ import annotations

WILDCARD = "*"


def split_url(url: str) -> tuple[list[str], bool]:
    url = url.strip()
    is_absolute = url.startswith("/")
    parts = url.split("/")
    while parts and parts[0] == "":
        parts = parts[1:]
    while parts and parts[-1] == "":
        parts = parts[:-1]
    return parts, is_absolute


class UrlMatcher:
    def __init__(self, template: str, method: str = "GET", should_log: bool = True):
        self.template = template.strip()
        self.method = method.upper()
        self.should_log = should_log
        self.parts, self.is_absolute = split_url(self.template)

    @property
    def key(self) -> tuple[str, str]:
        return self.method, self.template

    def __len__(self):
        return len(self.parts)

    def __repr__(self):
        return f"UrlMatcher({self.method} {self.template})"

    def match(self, parts: list[str], method: str, is_absolute: bool = True) -> tuple[dict, bool]:
        n = len(self.parts)
        if method.upper() != self.method:
            return {}, False
        if n == 0 or len(parts) != n:
            return {}, False
        if is_absolute != self.is_absolute:
            return {}, False
        if parts[0] != self.parts[0]:
            return {}, False
        params = {}
        for i in range(1, n):
            want = self.parts[i]
            if want == WILDCARD:
                if self.parts[i - 1] != WILDCARD:
                    params[self.parts[i - 1]] = parts[i]
            elif want != parts[i]:
                return {}, False
        return params, True


def check_unique(matchers: list[UrlMatcher]):
    seen = set()
    for m in matchers:
        if m.key in seen:
            raise ValueError(f"Duplicate url matcher {m.method} {m.template}")
        seen.add(m.key)
