"""Ignore-pattern matching for repository paths.

Patterns are exact names with at most one ``*`` wildcard, which matches any
run of characters (including none). This is not glob: there are
no character classes, no ``?`` and no ``**``. Every other character is matched
literally.
"""

import re
from typing import Iterable


class IgnorePattern:
    """A single compiled ignore pattern."""

    __slots__ = ("pattern", "_regex")

    def __init__(self, pattern: str):
        if not pattern:
            raise ValueError("Ignore pattern must not be empty")
        if pattern.count("*") > 1:
            raise ValueError(f"Ignore pattern {pattern!r} has more than one wildcard")
        self.pattern = pattern
        if "*" in pattern:
            head, tail = pattern.split("*")
            self._regex = re.compile(f"^{re.escape(head)}.*{re.escape(tail)}$")
        else:
            self._regex = None

    def matches(self, name: str) -> bool:
        if self._regex is None:
            return name == self.pattern
        return self._regex.match(name) is not None

    def __repr__(self) -> str:
        return f"IgnorePattern({self.pattern!r})"


class PathMatcher:
    """Match repository-relative paths against directory and file patterns.

    Directory patterns are tested against every directory component of the
    path; file patterns are tested against the final component only.
    """

    def __init__(self, directory_patterns: Iterable[str], file_patterns: Iterable[str]):
        self.directories = [IgnorePattern(p) for p in directory_patterns]
        self.files = [IgnorePattern(p) for p in file_patterns]

    def ignored_directory(self, path: str) -> bool:
        parts = path.split("/")[:-1]
        return any(p.matches(part) for part in parts for p in self.directories)

    def ignored_file(self, path: str) -> bool:
        name = path.rsplit("/", 1)[-1]
        return any(p.matches(name) for p in self.files)

    def is_ignored(self, path: str) -> bool:
        return self.ignored_directory(path) or self.ignored_file(path)
