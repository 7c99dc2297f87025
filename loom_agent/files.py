import difflib
import os
import re
import tempfile
from pathlib import Path
from typing import Optional, Union

from .errors import ApplyError, EditSafetyError, SecurityError


def norm_rel_path(p: str) -> str:
    p = (p or "").strip().replace("\\", "/")
    p = re.sub(r"^\./+", "", p)
    return Path(p).as_posix() if p else "."


class Workspace:
    """The sandbox root every task path is resolved against."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).expanduser().resolve()

    def resolve(self, rel_path: str) -> Path:
        """Resolve rel_path (symlinks included) and refuse anything outside the root."""
        rel = norm_rel_path(rel_path)
        target = (self.root / rel).resolve()
        try:
            target.relative_to(self.root)
        except ValueError:
            raise SecurityError(f"path escapes workspace: {rel_path!r} -> {target} (root={self.root})")
        return target

    def relative(self, target: Path) -> str:
        try:
            return target.resolve().relative_to(self.root).as_posix() or "."
        except ValueError:
            return str(target)


def write_atomic(target: Path, content: str) -> None:
    """Temp file in the target's directory, fsync, rename over, then read back."""
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            delete=False,
            dir=str(target.parent),
            prefix=target.name + ".tmp.",
            encoding="utf-8",
            newline="",
        ) as tmp:
            tmp.write(content)
            tmp.flush()
            os.fsync(tmp.fileno())
            tmp_path = Path(tmp.name)
        tmp_path.replace(target)
        with open(target, "r", encoding="utf-8", newline="") as f:
            disk = f.read()
    except OSError as exc:
        raise ApplyError(f"failed to write {target}: {exc}") from exc
    if disk != content:
        raise ApplyError(f"write verification failed for {target}")


def read_exact(target: Path) -> str:
    """File text with line endings untouched; non-UTF-8 files are refused."""
    try:
        with open(target, "r", encoding="utf-8", newline="") as f:
            return f.read()
    except UnicodeDecodeError as exc:
        raise EditSafetyError(
            f"cannot edit non-UTF-8 file: {target.name} ({exc.reason} at byte {exc.start})"
        ) from exc


def line_ending(text: str) -> str:
    """CRLF only when every line ends with it; mixed files are edited as-is."""
    crlf = text.count("\r\n")
    return "\r\n" if crlf and crlf == text.count("\n") else "\n"


def restore_line_ending(text: str, eol: str) -> str:
    if eol == "\n":
        return text
    return text.replace("\r\n", "\n").replace("\n", eol)


def is_binary(path: Path, probe: int = 512) -> bool:
    """NUL byte in the first `probe` bytes."""
    with open(path, "rb") as f:
        head = f.read(probe)
    return b"\x00" in head


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def generate_diff(
    old_content: str,
    new_content: str,
    filepath: str,
    context_lines: int = 3,
) -> str:
    old_lines = (old_content or "").splitlines(keepends=True)
    new_lines = (new_content or "").splitlines(keepends=True)
    diff = difflib.unified_diff(
        old_lines,
        new_lines,
        fromfile=f"a/{filepath}",
        tofile=f"b/{filepath}",
        n=context_lines,
    )
    return "".join(diff)


def count_lines(content: Optional[str]) -> int:
    if not content:
        return 0
    return len(content.splitlines())
