"""Unified-diff parsing and strict in-process hunk application."""

import re
from typing import List, Optional, Tuple

_HUNK_HEADER_RE = re.compile(r"^@@\s+-?(\d+)(?:,(\d+))?\s+\+(\d+)(?:,(\d+))?\s*@@")


class HunkApplyError(Exception):
    """A hunk's context/removal lines were not found in the file."""

    def __init__(self, message: str, hunk_index: int = 0):
        super().__init__(message)
        self.hunk_index = hunk_index


class DiffHunk:
    """A single hunk from a unified diff."""

    __slots__ = ("old_start", "old_count", "new_start", "new_count", "lines")

    def __init__(
        self,
        old_start: int = 0,
        old_count: int = 0,
        new_start: int = 0,
        new_count: int = 0,
        lines: Optional[List[Tuple[str, str]]] = None,
    ):
        self.old_start = old_start
        self.old_count = old_count
        self.new_start = new_start
        self.new_count = new_count
        # each entry is (prefix, content) where prefix is one of " ", "+", "-"
        self.lines = lines or []

    def expected(self) -> List[str]:
        """Lines that must already be in the file (context + removals)."""
        return [content for prefix, content in self.lines if prefix in (" ", "-")]

    def replacement(self) -> List[str]:
        return [content for prefix, content in self.lines if prefix in (" ", "+")]

    def __repr__(self) -> str:
        return (
            f"DiffHunk(@@ -{self.old_start},{self.old_count} "
            f"+{self.new_start},{self.new_count} @@ {len(self.lines)} lines)"
        )


def _header_path(line: str, prefix: str) -> str:
    path = line[len(prefix):].strip().split("\t")[0].strip()
    if path.startswith(("a/", "b/")):
        path = path[2:]
    return path


def diff_paths(diff_text: str) -> Tuple[Optional[str], Optional[str]]:
    """(old, new) paths from the ---/+++ headers; /dev/null stays literal."""
    old_path = new_path = None
    for line in (diff_text or "").replace("\r\n", "\n").split("\n"):
        if old_path is None and line.startswith("--- "):
            old_path = _header_path(line, "--- ")
        elif new_path is None and line.startswith("+++ "):
            new_path = _header_path(line, "+++ ")
        if old_path is not None and new_path is not None:
            break
    return old_path, new_path


def parse_hunks(diff_text: str) -> List[DiffHunk]:
    lines = (diff_text or "").replace("\r\n", "\n").split("\n")
    hunks: List[DiffHunk] = []
    current: Optional[DiffHunk] = None
    for i, line in enumerate(lines):
        if line.startswith("@@"):
            if current is not None and current.lines:
                hunks.append(current)
            m = _HUNK_HEADER_RE.match(line)
            if m:
                current = DiffHunk(
                    old_start=int(m.group(1)),
                    old_count=int(m.group(2)) if m.group(2) is not None else 1,
                    new_start=int(m.group(3)),
                    new_count=int(m.group(4)) if m.group(4) is not None else 1,
                )
            else:
                current = DiffHunk()
            continue
        if current is None:
            continue
        if line.startswith("--- ") and i + 1 < len(lines) and lines[i + 1].startswith("+++ "):
            # a second file section; one diff edits one file
            break
        if line.startswith("+"):
            current.lines.append(("+", line[1:]))
        elif line.startswith("-"):
            current.lines.append(("-", line[1:]))
        elif line.startswith(" "):
            current.lines.append((" ", line[1:]))
        elif line == r"\ No newline at end of file":
            continue
        elif line == "":
            # blank context line whose leading space was stripped
            if any(ln.startswith(("+", "-", " ")) for ln in lines[i + 1 : i + 3]):
                current.lines.append((" ", ""))
        else:
            break
    if current is not None and current.lines:
        hunks.append(current)
    return [h for h in hunks if any(p in ("+", "-") for p, _ in h.lines)]


def _locate(file_lines: List[str], expected: List[str], lo: int, hint: int, strip: bool) -> int:
    n = len(expected)
    if strip:
        want = [e.strip() for e in expected]
    else:
        want = expected
    hits = []
    for pos in range(lo, len(file_lines) - n + 1):
        window = file_lines[pos : pos + n]
        if strip:
            window = [w.strip() for w in window]
        if window == want:
            hits.append(pos)
    if not hits:
        return -1
    return min(hits, key=lambda p: abs(p - hint))


def apply_hunks(content: str, hunks: List[DiffHunk]) -> str:
    """Apply every hunk or raise HunkApplyError; nothing partial is returned.

    Each hunk is located by its expected lines: exact first, then
    whitespace-insensitive. Header line numbers only break ties.
    """
    had_trailing_nl = content.endswith("\n")
    file_lines = content.split("\n")
    if had_trailing_nl:
        file_lines = file_lines[:-1]
    if content == "":
        file_lines = []

    cursor = 0
    offset = 0
    for n, hunk in enumerate(hunks, 1):
        expected = hunk.expected()
        hint = max(0, hunk.old_start - 1 + offset)
        if not expected:
            # pure insertion: old_start is the line the new lines follow
            pos = min(max(0, hunk.old_start + offset), len(file_lines))
        else:
            pos = _locate(file_lines, expected, cursor, hint, strip=False)
            if pos == -1:
                pos = _locate(file_lines, expected, cursor, hint, strip=True)
            if pos == -1:
                first = next((e for e in expected if e.strip()), expected[0])
                raise HunkApplyError(
                    f"hunk {n} could not be located (expected line: {first.strip()!r})",
                    hunk_index=n,
                )
        replacement = hunk.replacement()
        file_lines[pos : pos + len(expected)] = replacement
        cursor = pos + len(replacement)
        offset += len(replacement) - len(expected)

    if not file_lines:
        return ""
    return "\n".join(file_lines) + ("\n" if had_trailing_nl or content == "" else "")
