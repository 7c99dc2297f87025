"""LOOM_EDIT diff blocks: unified diffs embedded in model output.

Two wrappings are recognised::

    >>LOOM_EDIT file=src/app.py          ```LOOM_EDIT
    --- a/src/app.py                     --- a/src/app.py
    +++ b/src/app.py                     +++ b/src/app.py
    @@ -1,3 +1,3 @@                      @@ -1,3 +1,3 @@
    ...                                  ...
    <<LOOM_EDIT                          ```

Blocks are applied one by one; a failing block does not undo the ones before it.
"""

import os
import re
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .errors import ApplyError, LoomError, ValidationError
from .files import Workspace, line_ending, norm_rel_path, read_exact, restore_line_ending, write_atomic
from .patching import HunkApplyError, apply_hunks, diff_paths, parse_hunks
from .utils import DebugLog

_FENCED_RE = re.compile(r"```LOOM_EDIT[ \t]*\n(.*?)\n?```", re.S)
_MARKER_RE = re.compile(r"(?:>>|🔧 )LOOM_EDIT(.*?)<<LOOM_EDIT", re.S)
_MARKER_FILE_RE = re.compile(r"file=([^\s]+)")
_PLUS_HEADER_RE = re.compile(r"^\+\+\+ b/(.+)$", re.M)


@dataclass
class EditBlock:
    diff_text: str
    path: str


def _plus_header_path(diff_text: str) -> str:
    m = _PLUS_HEADER_RE.search(diff_text)
    return m.group(1).split("\t")[0].strip() if m else ""


def _unescape(body: str) -> str:
    # single-line JSON-ish output carries literal "\n"
    if "\n" not in body.strip() and "\\n" in body:
        return body.replace("\\n", "\n")
    return body


def parse_edit_blocks(text: str) -> List[EditBlock]:
    """Fenced blocks first, then marker blocks; blocks naming no file are skipped."""
    blocks: List[EditBlock] = []
    for m in _FENCED_RE.finditer(text or ""):
        body = _unescape(m.group(1))
        path = _plus_header_path(body)
        if not body.strip() or not path:
            continue
        blocks.append(EditBlock(diff_text=body, path=path))

    for m in _MARKER_RE.finditer(text or ""):
        inner = _unescape(m.group(1))
        header, _, body = inner.partition("\n")
        fm = _MARKER_FILE_RE.search(header)
        if not fm:
            continue
        blocks.append(EditBlock(diff_text=body, path=fm.group(1).strip("\"'")))
    return blocks


def validate_diff_format(diff_text: str) -> None:
    has_minus = has_plus = has_hunk = False
    for line in (diff_text or "").split("\n"):
        if line.startswith("--- a/") or line.startswith("--- /dev/null"):
            has_minus = True
        elif line.startswith("+++ b/"):
            has_plus = True
        elif line.startswith("@@") and "@@" in line[2:]:
            has_hunk = True
    if not has_minus:
        raise ValidationError("missing --- a/ header", field="diff")
    if not has_plus:
        raise ValidationError("missing +++ b/ header", field="diff")
    if not has_hunk:
        raise ValidationError("missing @@ hunk header", field="diff")


# ---------- Patch tools ----------


class PatchApplier:
    """Applies one unified diff beneath a root directory; raises ApplyError."""

    def apply(self, diff_text: str, workspace_root: Path) -> None:
        raise NotImplementedError


class GitApplyPatcher(PatchApplier):
    def __init__(self, timeout: int = 30, log: Optional[DebugLog] = None):
        self.timeout = timeout
        self.log = log or DebugLog.disabled()

    def apply(self, diff_text: str, workspace_root: Path) -> None:
        patch = diff_text if diff_text.endswith("\n") else diff_text + "\n"
        with tempfile.NamedTemporaryFile(
            "w", suffix=".patch", prefix="loom_edit_", delete=False, encoding="utf-8"
        ) as tmp:
            tmp.write(patch)
            patch_path = tmp.name
        cmd = ["git", "apply", "--reject", "--whitespace=nowarn", patch_path]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                cwd=str(workspace_root),
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise ApplyError("git not found on PATH") from exc
        except subprocess.TimeoutExpired as exc:
            raise ApplyError(f"git apply timed out after {self.timeout} seconds") from exc
        finally:
            os.unlink(patch_path)
        output = (result.stdout or "") + (result.stderr or "")
        self.log.dbg(f"git apply exit={result.returncode} output={output.strip()[:200]!r}")
        if result.returncode != 0:
            raise ApplyError(
                f"git apply failed (exit {result.returncode})\nOutput: {output.strip()}\n\n"
                "The diff is probably malformed or its context no longer matches the file."
            )


class InProcessPatcher(PatchApplier):
    """Applies the diff with patching.apply_hunks and the atomic writer."""

    def apply(self, diff_text: str, workspace_root: Path) -> None:
        workspace = Workspace(workspace_root)
        old_path, new_path = diff_paths(diff_text)
        if not new_path or new_path == "/dev/null":
            raise ApplyError("diff deletes the file or names no destination; not supported")
        target = workspace.resolve(new_path)
        creating = old_path == "/dev/null"
        if creating:
            if target.exists():
                raise ApplyError(f"diff creates {new_path} but it already exists")
            original = ""
        else:
            if not target.is_file():
                raise ApplyError(f"file not found: {new_path}")
            original = read_exact(target)
        eol = line_ending(original)
        if eol != "\n":
            original = original.replace("\r\n", "\n")
        hunks = parse_hunks(diff_text)
        if not hunks:
            raise ApplyError("diff contains no hunks with changes")
        try:
            updated = apply_hunks(original, hunks)
        except HunkApplyError as exc:
            raise ApplyError(str(exc)) from exc
        write_atomic(target, restore_line_ending(updated, eol))


# ---------- Processor ----------


@dataclass
class BlockOutcome:
    index: int
    path: str
    success: bool
    error: str = ""


@dataclass
class DiffBlockResult:
    outcomes: List[BlockOutcome] = field(default_factory=list)

    @property
    def blocks_found(self) -> int:
        return len(self.outcomes)

    @property
    def success(self) -> bool:
        return bool(self.outcomes) and all(o.success for o in self.outcomes)

    @property
    def files_edited(self) -> List[str]:
        return [o.path for o in self.outcomes if o.success]

    def format_message(self) -> str:
        applied = sum(1 for o in self.outcomes if o.success)
        out = [f"LOOM_EDIT results: {applied} of {self.blocks_found} blocks applied"]
        for o in self.outcomes:
            if o.success:
                out.append(f"✅ block {o.index}: {o.path}")
            else:
                out.append(f"❌ block {o.index}: {o.path} - {o.error}")
        return "\n".join(out)


class DiffBlockProcessor:
    def __init__(
        self,
        workspace: Workspace,
        patcher: Optional[PatchApplier] = None,
        log: Optional[DebugLog] = None,
    ):
        self.workspace = workspace
        self.log = log or DebugLog.disabled()
        self.patcher = patcher or GitApplyPatcher(log=self.log)

    def has_blocks(self, text: str) -> bool:
        return bool(parse_edit_blocks(text))

    def _check_paths(self, block: EditBlock) -> None:
        self.workspace.resolve(block.path)
        old_path, new_path = diff_paths(block.diff_text)
        for p in (old_path, new_path):
            if p and p != "/dev/null":
                self.workspace.resolve(p)
        if new_path and new_path != "/dev/null" and norm_rel_path(new_path) != norm_rel_path(block.path):
            raise ValidationError(
                f"block names file={block.path} but its +++ header is {new_path}", field="path"
            )

    def apply_block(self, block: EditBlock) -> None:
        validate_diff_format(block.diff_text)
        self._check_paths(block)
        self.patcher.apply(block.diff_text, self.workspace.root)

    def process(self, text: str, dry_run: bool = False) -> DiffBlockResult:
        """Apply every block in text in order and report each one.

        With dry_run the blocks are validated but nothing is patched.
        """
        result = DiffBlockResult()
        for i, block in enumerate(parse_edit_blocks(text), 1):
            try:
                if dry_run:
                    validate_diff_format(block.diff_text)
                    self._check_paths(block)
                else:
                    self.apply_block(block)
            except LoomError as exc:
                msg = f"failed to apply edit block {i} (file: {block.path}): {exc}"
                self.log.dbg(msg)
                result.outcomes.append(BlockOutcome(i, block.path, False, msg))
                continue
            self.log.tool(f"LOOM_EDIT block {i} applied to {block.path}")
            result.outcomes.append(BlockOutcome(i, block.path, True))
        return result
