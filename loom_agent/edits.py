"""Edit engine: choose a strategy for an EditFile task, stage the new content,
then write it.

prepare() never touches the disk beyond reading the current file; apply()
refuses to write if the file changed after prepare().
"""

import difflib
import hashlib
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from .anchors import find_anchor
from .classifiers import is_diff_formatted_content
from .errors import ApplyError, EditSafetyError
from .files import (
    Workspace,
    count_lines,
    generate_diff,
    is_binary,
    line_ending,
    norm_rel_path,
    read_exact,
    restore_line_ending,
    write_atomic,
)
from .models import BEGINNING_OF_FILE, ContextualError, EditSummary, Task
from .patching import HunkApplyError, apply_hunks, parse_hunks
from .safety import check_full_replacement
from .utils import DebugLog

REREAD_ACTION = "Re-read the file with ReadFile before retrying the edit"

_ECHO_PREFIX_RE = re.compile(r"^\s*\d+: ?")


@dataclass
class PreparedEdit:
    path: str
    target: Path
    old_content: str
    new_content: str
    exists: bool
    sha256: str
    diff_preview: str
    summary: EditSummary
    strategy: str

    @property
    def is_identical(self) -> bool:
        return self.summary.is_identical_content


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def summarize_edit(
    old: str,
    new: str,
    file_path: str,
    existed: bool = True,
    intent: str = "",
) -> EditSummary:
    """Line-level change counts from difflib opcodes.

    A replaced block counts min(old, new) lines as modified and the
    remainder as added or removed.
    """
    old_lines = old.splitlines()
    new_lines = new.splitlines()
    identical = existed and old == new
    added = removed = modified = 0
    if not identical:
        matcher = difflib.SequenceMatcher(a=old_lines, b=new_lines, autojunk=False)
        for tag, i1, i2, j1, j2 in matcher.get_opcodes():
            if tag == "replace":
                common = min(i2 - i1, j2 - j1)
                modified += common
                removed += (i2 - i1) - common
                added += (j2 - j1) - common
            elif tag == "delete":
                removed += i2 - i1
            elif tag == "insert":
                added += j2 - j1
    if identical:
        text = f"{intent} - File already contains the desired content" if intent else (
            "File already contains the desired content - no changes needed"
        )
    else:
        text = intent
    return EditSummary(
        file_path=file_path,
        edit_type="modify" if existed else "create",
        lines_before=len(old_lines),
        lines_after=len(new_lines),
        bytes_before=len(old.encode("utf-8")),
        bytes_after=len(new.encode("utf-8")),
        lines_added=added,
        lines_removed=removed,
        lines_modified=modified,
        is_identical_content=identical,
        summary=text,
    )


def strip_echoed_line_numbers(lines: List[str]) -> List[str]:
    """Drop ``  12: `` prefixes copied from ReadFile output.

    Only applied when every non-blank line carries one.
    """
    non_blank = [ln for ln in lines if ln.strip()]
    if non_blank and all(_ECHO_PREFIX_RE.match(ln) for ln in non_blank):
        return [_ECHO_PREFIX_RE.sub("", ln, count=1) for ln in lines]
    return list(lines)


def _split(content: str) -> List[str]:
    return content.split("\n")


def _content_lines(content: str) -> List[str]:
    if content.endswith("\n"):
        content = content[:-1]
    return content.split("\n")


# ---------- Context-anchored modes ----------


def _anchor_error(path: str, lines: List[str], anchor: str, role: str) -> EditSafetyError:
    msg = f"could not find {role} context: {anchor}"
    ce = (
        ContextualError("anchor_not_found", msg, path)
        .set_file_context(True, len(lines), len("\n".join(lines).encode("utf-8")))
        .add_suggestion("Use a line copied exactly from the current file as the anchor")
        .add_required_action(REREAD_ACTION)
    )
    return EditSafetyError(msg, contextual_error=ce)


def perform_targeted_edit(path: str, original: str, task: Task) -> str:
    mode = task.insert_mode
    content = task.content
    lines = _split(original)

    if mode == "append":
        if original == "":
            return content
        if original.endswith("\n"):
            return original + content + ("" if content.endswith("\n") else "\n")
        return original + "\n" + content

    if mode == "insert_before":
        if task.start_context == BEGINNING_OF_FILE:
            if original == "":
                return content
            return content + ("" if content.endswith("\n") else "\n") + original
        idx, _ = find_anchor(lines, task.start_context)
        if idx == -1:
            raise _anchor_error(path, lines, task.start_context, "start")
        return "\n".join(lines[:idx] + _content_lines(content) + lines[idx:])

    if mode == "insert_after":
        idx, _ = find_anchor(lines, task.start_context)
        if idx == -1:
            raise _anchor_error(path, lines, task.start_context, "start")
        return "\n".join(lines[: idx + 1] + _content_lines(content) + lines[idx + 1 :])

    if mode == "replace":
        start, _ = find_anchor(lines, task.start_context)
        if start == -1:
            raise _anchor_error(path, lines, task.start_context, "start")
        end = start
        if task.end_context:
            end, _ = find_anchor(lines, task.end_context, start + 1)
            if end == -1:
                raise _anchor_error(path, lines, task.end_context, "end")
        new_lines = _content_lines(content) if content else []
        return "\n".join(lines[:start] + new_lines + lines[end + 1 :])

    if mode == "replace_all":
        find_text = task.start_context
        replace_text = task.end_context if task.end_context else content
        if not find_text:
            raise EditSafetyError("replace_all requires the text to find (start_context)")
        result = original.replace(find_text, replace_text)
        if find_text not in original:
            if find_text.lower() in original.lower():
                raise EditSafetyError(
                    f"no exact matches for '{find_text}' found in file - found similar text with "
                    "different case. Replace operations are case-sensitive; use the exact case"
                )
            raise EditSafetyError(
                f"no occurrences of '{find_text}' found in file - verify the exact text exists"
            )
        return result

    if mode == "insert_between":
        start, _ = find_anchor(lines, task.start_context)
        if start == -1:
            raise _anchor_error(path, lines, task.start_context, "start")
        end, _ = find_anchor(lines, task.end_context, start + 1)
        if end == -1:
            raise _anchor_error(path, lines, task.end_context, "end")
        return "\n".join(lines[: start + 1] + _content_lines(content) + lines[end:])

    raise EditSafetyError(f"unknown insert mode: {mode}")


# ---------- SafeEdit ----------


def _same(a: List[str], b: List[str]) -> bool:
    return len(a) == len(b) and all(x.strip() == y.strip() for x, y in zip(a, b))


def _trim_blank_edges(lines: List[str]) -> List[str]:
    out = list(lines)
    while out and not out[0].strip():
        out.pop(0)
    while out and not out[-1].strip():
        out.pop()
    return out


def _target_range(task: Task) -> Tuple[int, int]:
    if task.target_line > 0:
        return task.target_line, task.target_line
    if task.target_start_line > 0:
        end = task.target_end_line if task.target_end_line > 0 else task.target_start_line
        return task.target_start_line, end
    return 0, 0


def _mismatch(path: str, lines: List[str], msg: str, start: int, end: int) -> EditSafetyError:
    ce = (
        ContextualError("context_mismatch", msg, path)
        .set_file_context(True, len(lines), len("\n".join(lines).encode("utf-8")))
        .add_suggestion("Copy the BEFORE and AFTER lines exactly from a fresh ReadFile result")
        .add_required_action(REREAD_ACTION)
        .add_required_action("Resend the edit with contexts that match the current file")
    )
    if start:
        ce.set_request_context("REPLACE", start, end)
        ce.add_context_lines(lines, start, 3)
    return EditSafetyError(msg, contextual_error=ce)


def perform_safe_edit(path: str, original: str, task: Task) -> str:
    """Replace the lines between the BEFORE and AFTER contexts.

    With target lines the contexts must sit immediately around them;
    without, the contexts alone must identify exactly one region.
    """
    lines = _split(original)
    before = _trim_blank_edges(strip_echoed_line_numbers(task.before_context))
    after = _trim_blank_edges(strip_echoed_line_numbers(task.after_context))
    new_lines = strip_echoed_line_numbers(_content_lines(task.content)) if task.content else []
    if not before or not after:
        raise _mismatch(path, lines, "SafeEdit needs both BEFORE and AFTER context lines", 0, 0)

    start, end = _target_range(task)
    if start:
        if start < 1 or end < start or end > len(lines):
            raise _mismatch(
                path, lines,
                f"target lines {start}-{end} are out of range (file has {len(lines)} lines)",
                start if start <= len(lines) else len(lines), end,
            )
        # contexts sit strictly outside the target lines
        b0 = start - 1 - len(before)
        if b0 < 0 or not _same(lines[b0 : start - 1], before):
            raise _mismatch(
                path, lines,
                f"BEFORE context does not match the lines immediately above line {start}",
                start, end,
            )
        if not _same(lines[end : end + len(after)], after):
            raise _mismatch(
                path, lines,
                f"AFTER context does not match the lines immediately below line {end}",
                start, end,
            )
        if task.context_validation:
            target = lines[start - 1].strip()
            if task.context_validation.lower() not in target.lower():
                raise _mismatch(
                    path, lines,
                    f"context validation failed: expected line {start} to contain "
                    f"'{task.context_validation}', found '{target}'",
                    start, end,
                )
        return "\n".join(lines[: start - 1] + new_lines + lines[end:])

    regions: List[Tuple[int, int]] = []
    for i in range(len(before), len(lines) + 1):
        if not _same(lines[i - len(before) : i], before):
            continue
        for j in range(i, len(lines) - len(after) + 1):
            if _same(lines[j : j + len(after)], after):
                regions.append((i, j))
                break
    if not regions:
        raise _mismatch(path, lines, "BEFORE/AFTER context was not found in the file", 0, 0)
    if len(regions) > 1:
        raise _mismatch(
            path, lines,
            f"BEFORE/AFTER context matches {len(regions)} locations; add EDIT_LINES to pick one",
            regions[0][0] + 1, regions[0][1],
        )
    i, j = regions[0]
    return "\n".join(lines[:i] + new_lines + lines[j:])


# ---------- Line range ----------


def perform_line_edit(path: str, original: str, exists: bool, task: Task) -> str:
    start, end = _target_range(task)
    lines = _split(original)
    total = count_lines(original)
    if not exists:
        if start > 1:
            raise EditSafetyError(f"cannot edit line {start} in non-existent file {path}")
        return task.content
    if start < 1 or start > total:
        raise _mismatch(path, lines, f"target line {start} is out of range (file has {total} lines)", 0, 0)
    if end > total:
        raise _mismatch(path, lines, f"target end line {end} is out of range (file has {total} lines)", 0, 0)
    if task.context_validation:
        target = lines[start - 1].strip()
        if task.context_validation.lower() not in target.lower():
            raise _mismatch(
                path, lines,
                f"context validation failed: expected line {start} to contain "
                f"'{task.context_validation}', found '{target}'",
                start, end,
            )
    new_lines = _content_lines(task.content) if task.content else []
    intent = task.intent.lower()
    if "insert" in intent and "before" in intent:
        return "\n".join(lines[: start - 1] + new_lines + lines[start - 1 :])
    if "insert" in intent and "after" in intent:
        return "\n".join(lines[:start] + new_lines + lines[start:])
    return "\n".join(lines[: start - 1] + new_lines + lines[end:])


# ---------- Engine ----------


class EditEngine:
    def __init__(self, workspace: Workspace, log: Optional[DebugLog] = None):
        self.workspace = workspace
        self.log = log or DebugLog.disabled()

    def _read_current(self, target: Path) -> Tuple[bool, str]:
        if not target.exists():
            return False, ""
        if target.is_dir():
            raise ApplyError(f"path is a directory: {self.workspace.relative(target)}")
        if is_binary(target):
            raise EditSafetyError(f"cannot edit binary file: {self.workspace.relative(target)}")
        return True, read_exact(target)

    def _unified_diff(self, path: str, original: str, exists: bool, task: Task) -> str:
        hunks = parse_hunks(task.diff)
        if not hunks:
            raise EditSafetyError("diff contains no hunks with changes")
        if not exists and any(h.expected() for h in hunks):
            raise EditSafetyError(f"cannot apply diff with context lines to non-existent file {path}")
        try:
            return apply_hunks(original, hunks)
        except HunkApplyError as exc:
            lines = _split(original)
            ce = (
                ContextualError("hunk_not_found", str(exc), path)
                .set_file_context(exists, count_lines(original), len(original.encode("utf-8")))
                .add_suggestion("Build diff context from lines copied exactly from the current file")
                .add_required_action(REREAD_ACTION)
            )
            hunk = hunks[exc.hunk_index - 1] if exc.hunk_index else None
            if hunk is not None and hunk.old_start:
                ce.add_context_lines(lines, hunk.old_start, 3)
            raise EditSafetyError(str(exc), contextual_error=ce) from exc

    def _full_replacement(self, path: str, original: str, exists: bool, task: Task) -> str:
        if is_diff_formatted_content(task.content):
            raise EditSafetyError(
                "content appears to be in diff format; send a unified diff or the complete file content"
            )
        reason = check_full_replacement(path, original if exists else None, task.content)
        if reason:
            msg = f"full replacement rejected: {reason}"
            ce = (
                ContextualError("truncation", msg, path)
                .set_file_context(True, count_lines(original), len(original.encode("utf-8")))
                .add_suggestion("Use a targeted edit (anchor, SafeEdit or diff) instead of rewriting the file")
                .add_required_action(REREAD_ACTION)
                .add_required_action("Send the complete file content if a full rewrite is intended")
            )
            raise EditSafetyError(msg, contextual_error=ce)
        return task.content

    def prepare(self, task: Task) -> PreparedEdit:
        """Compute the new content for task without writing anything.

        Raises SecurityError, EditSafetyError or ApplyError.
        """
        strategy = task.edit_strategy()
        if strategy is None:
            raise EditSafetyError("EditFile requires a diff, content, or an anchored/SafeEdit/line target")
        if strategy == "diff_block":
            raise EditSafetyError("diff-block edits are applied by the diff-block processor")
        target = self.workspace.resolve(task.path)
        path = norm_rel_path(task.path)
        exists, raw = self._read_current(target)
        eol = line_ending(raw)
        # strategies work on LF text; CRLF is put back before staging
        original = raw.replace("\r\n", "\n") if eol != "\n" else raw
        self.log.dbg(f"edit prepare: path={path} strategy={strategy} exists={exists} eol={eol!r}")

        if strategy == "unified_diff":
            new = self._unified_diff(path, original, exists, task)
        elif strategy == "full_replacement":
            new = self._full_replacement(path, original, exists, task)
        elif strategy == "safe_edit":
            if not exists:
                raise EditSafetyError(f"SafeEdit target does not exist: {path}")
            new = perform_safe_edit(path, original, task)
        elif strategy == "anchored":
            if not exists and task.insert_mode not in ("append", "insert_before"):
                raise EditSafetyError(f"cannot apply {task.insert_mode} to non-existent file {path}")
            new = perform_targeted_edit(path, original, task)
        else:
            new = perform_line_edit(path, original, exists, task)
        if eol != "\n":
            new = new.replace("\r\n", "\n")

        summary = summarize_edit(original, new, path, existed=exists, intent=task.intent)
        return PreparedEdit(
            path=path,
            target=target,
            old_content=raw,
            new_content=restore_line_ending(new, eol),
            exists=exists,
            sha256=_sha256(raw) if exists else "",
            diff_preview="" if summary.is_identical_content else generate_diff(original, new, path),
            summary=summary,
            strategy=strategy,
        )

    def apply(self, prepared: PreparedEdit) -> None:
        if prepared.is_identical:
            self.log.dbg(f"edit apply: {prepared.path} unchanged, skipping write")
            return
        exists_now = prepared.target.exists()
        if exists_now != prepared.exists or (
            exists_now and _sha256(read_exact(prepared.target)) != prepared.sha256
        ):
            raise EditSafetyError(
                f"{prepared.path} changed after the edit was prepared; re-read the file and retry"
            )
        write_atomic(prepared.target, prepared.new_content)
        self.log.tool(
            f"edit {prepared.path} strategy={prepared.strategy} "
            f"+{prepared.summary.lines_added} -{prepared.summary.lines_removed} "
            f"~{prepared.summary.lines_modified}"
        )
