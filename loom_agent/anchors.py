"""Anchor line lookup for context-anchored edits.

Strategies run in order over the whole file: exact (whitespace-stripped)
line, case-insensitive substring, then regex when the anchor carries regex
metacharacters. The first strategy with any hit wins.
"""

import re
from typing import Callable, List, Optional, Tuple

_REGEX_META = set("*^$+?[]{}|\\")


def _exact_line(line: str, anchor: str) -> bool:
    return line.strip() == anchor


def _substring_ci(line: str, anchor: str) -> bool:
    return anchor.lower() in line.lower()


def _compile(anchor: str) -> Optional["re.Pattern"]:
    if not any(ch in _REGEX_META for ch in anchor):
        return None
    try:
        return re.compile(anchor)
    except re.error:
        return None


_MATCH_STRATEGIES: List[Tuple[str, Callable[[str, str], bool]]] = [
    ("exact", _exact_line),
    ("substring", _substring_ci),
]


def find_anchor(lines: List[str], anchor: str, start: int = 0) -> Tuple[int, str]:
    """Return (0-based index, strategy) of the first line at or after start
    matching anchor, or (-1, "") when nothing matches."""
    needle = (anchor or "").strip()
    if not needle:
        return -1, ""
    for name, matches in _MATCH_STRATEGIES:
        for i in range(max(0, start), len(lines)):
            if matches(lines[i], needle):
                return i, name
    pattern = _compile(needle)
    if pattern is not None:
        for i in range(max(0, start), len(lines)):
            if pattern.search(lines[i].strip()):
                return i, "regex"
    return -1, ""


def matches_anchor(line: str, anchor: str) -> bool:
    idx, _ = find_anchor([line], anchor)
    return idx == 0
