"""Anti-truncation checks run before a full-file replacement is accepted.

Each check returns None when the new content is acceptable, else a short
reason the model can act on.
"""

import re
from pathlib import PurePosixPath
from typing import Callable, List, Optional

from .files import count_lines

CODE_EXTS = {
    "py", "js", "jsx", "ts", "tsx", "go", "rs", "java", "kt", "c", "h", "cc",
    "cpp", "cxx", "hpp", "cs", "swift", "php", "rb", "scala", "dart", "lua",
}
CONFIG_EXTS = {"yaml", "yml", "toml", "ini", "cfg", "conf", "env", "properties"}
MARKDOWN_EXTS = {"md", "markdown"}

# Files at or under these sizes are exempt from the shrink rules
MIN_LINES_FOR_SHRINK_CHECK = 10
MIN_BYTES_FOR_SHRINK_CHECK = 500

_KV_RE = re.compile(r"^\s*[\w.\-\[\]\"']+\s*[:=]")
_HEADER_RE = re.compile(r"^\s{0,3}#{1,6}\s")


def _ext(path: str) -> str:
    return PurePosixPath(path).suffix.lower().lstrip(".")


# ---------- Size ----------


def check_line_shrink(original: str, new: str) -> Optional[str]:
    old_n = count_lines(original)
    new_n = count_lines(new)
    if old_n > MIN_LINES_FOR_SHRINK_CHECK and new_n < old_n / 2:
        return (
            f"new content has {new_n} lines but the file has {old_n}; "
            "more than half the file would be removed"
        )
    return None


def check_byte_shrink(original: str, new: str) -> Optional[str]:
    old_b = len(original.encode("utf-8"))
    new_b = len(new.encode("utf-8"))
    if old_b > MIN_BYTES_FOR_SHRINK_CHECK and new_b < old_b / 3:
        return f"new content is {new_b} bytes but the file is {old_b}; less than a third would remain"
    return None


# ---------- Structure ----------


def check_bracket_balance(path: str, original: str, new: str) -> Optional[str]:
    if _ext(path) not in CODE_EXTS:
        return None
    for open_ch, close_ch in (("{", "}"), ("(", ")"), ("[", "]")):
        was_balanced = original.count(open_ch) == original.count(close_ch)
        if was_balanced and new.count(open_ch) != new.count(close_ch):
            return (
                f"unbalanced {open_ch}{close_ch} in new content "
                f"({new.count(open_ch)} open, {new.count(close_ch)} close)"
            )
    return None


def check_json_terminated(path: str, new: str) -> Optional[str]:
    if _ext(path) != "json":
        return None
    s = new.strip()
    if s.startswith("{") and not s.endswith("}"):
        return "JSON object is not terminated"
    if s.startswith("[") and not s.endswith("]"):
        return "JSON array is not terminated"
    return None


def check_markdown_headers(path: str, original: str, new: str) -> Optional[str]:
    if _ext(path) not in MARKDOWN_EXTS:
        return None
    old_h = sum(1 for ln in original.splitlines() if _HEADER_RE.match(ln))
    new_h = sum(1 for ln in new.splitlines() if _HEADER_RE.match(ln))
    if old_h > 5 and new_h < old_h / 3:
        return f"markdown headers dropped from {old_h} to {new_h}"
    return None


def check_key_value_structure(path: str, original: str, new: str) -> Optional[str]:
    if _ext(path) not in CONFIG_EXTS:
        return None
    old_kv = sum(1 for ln in original.splitlines() if _KV_RE.match(ln))
    new_kv = sum(1 for ln in new.splitlines() if _KV_RE.match(ln))
    if old_kv > 0 and new_kv == 0:
        return "key/value structure lost"
    if old_kv > 5 and new_kv < old_kv / 3:
        return f"key/value entries dropped from {old_kv} to {new_kv}"
    return None


def check_full_replacement(path: str, original: Optional[str], new: str) -> Optional[str]:
    """Run every rule against an existing file's content; new files always pass."""
    if original is None or original == "":
        return None
    checks: List[Callable[[], Optional[str]]] = [
        lambda: check_line_shrink(original, new),
        lambda: check_byte_shrink(original, new),
        lambda: check_bracket_balance(path, original, new),
        lambda: check_json_terminated(path, new),
        lambda: check_markdown_headers(path, original, new),
        lambda: check_key_value_structure(path, original, new),
    ]
    for check in checks:
        reason = check()
        if reason:
            return reason
    return None
