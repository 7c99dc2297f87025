"""Ripgrep-backed Search collaborator.

Runs ``rg`` with the task's flags and returns structured results; the
executor turns them into the model-facing text with format_search_results().
"""

import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .errors import LoomError
from .models import Task
from .utils import DebugLog

_RG_BIN = "rg"  # assumes ripgrep is on PATH

_MATCH_LINE_RE = re.compile(r"^(.+?):(\d+):(.*)$")


class SearchError(LoomError):
    pass


@dataclass
class GrepMatch:
    file: str
    line: int
    text: str


@dataclass
class GrepResult:
    query: str = ""
    # rg output lines, context and separators included
    lines: List[str] = field(default_factory=list)
    matches: List[GrepMatch] = field(default_factory=list)
    name_matches: List[str] = field(default_factory=list)
    match_count: int = 0
    file_count: int = 0
    truncated: bool = False

    @property
    def empty(self) -> bool:
        return not self.lines and not self.name_matches


class Searcher:
    def search(self, task: Task, search_path: Path, root: Path) -> GrepResult:
        raise NotImplementedError


def _fuzzy(query: str, name: str) -> bool:
    it = iter(name.lower())
    return all(ch in it for ch in query.lower())


def build_rg_args(task: Task, rel_path: str) -> List[str]:
    cmd = [_RG_BIN, "--no-heading", "--color=never", "--max-columns", "300", "--max-columns-preview"]
    if not task.filenames_only and not task.count_matches:
        cmd.append("--line-number")
    if task.ignore_case:
        cmd.append("-i")
    if task.whole_word:
        cmd.append("-w")
    if task.fixed_string:
        cmd.append("-F")
    if task.filenames_only:
        cmd.append("-l")
    if task.count_matches:
        cmd.append("-c")
    if task.context_before > 0:
        cmd.append(f"-B{task.context_before}")
    if task.context_after > 0:
        cmd.append(f"-A{task.context_after}")
    for t in task.file_types:
        cmd.extend(["-t", t])
    for t in task.exclude_types:
        cmd.extend(["-T", t])
    for g in task.glob_patterns:
        cmd.extend(["-g", g])
    for g in task.exclude_globs:
        cmd.extend(["-g", "!" + g])
    if task.search_hidden:
        cmd.append("--hidden")
    if task.max_results > 0:
        cmd.extend(["-m", str(task.max_results)])
    cmd.extend(["--", task.query, rel_path])
    return cmd


class RipgrepSearch(Searcher):
    def __init__(self, timeout: int = 10, log: Optional[DebugLog] = None):
        self.timeout = timeout
        self.log = log or DebugLog.disabled()

    def _run(self, cmd: List[str], root: Path) -> subprocess.CompletedProcess:
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                cwd=str(root),
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise SearchError("ripgrep (rg) not found on PATH") from exc
        except subprocess.TimeoutExpired as exc:
            raise SearchError(f"search timed out after {self.timeout} seconds") from exc
        # exit 1 means no matches
        if result.returncode not in (0, 1):
            raise SearchError(f"ripgrep search failed: {(result.stderr or '').strip()}")
        return result

    def _search_names(self, task: Task, rel_path: str, root: Path) -> List[str]:
        cmd = [_RG_BIN, "--files"]
        if task.search_hidden:
            cmd.append("--hidden")
        cmd.append(rel_path)
        result = self._run(cmd, root)
        limit = task.max_name_results or 50
        found: List[str] = []
        q = task.query.lower()
        for path in (result.stdout or "").splitlines():
            name = path.rsplit("/", 1)[-1]
            if q in name.lower() or (task.fuzzy_match and _fuzzy(task.query, name)):
                found.append(path)
                if len(found) >= limit:
                    break
        return found

    def search(self, task: Task, search_path: Path, root: Path) -> GrepResult:
        try:
            rel_path = search_path.relative_to(root).as_posix() or "."
        except ValueError:
            rel_path = str(search_path)
        cmd = build_rg_args(task, rel_path)
        self.log.dbg(f"search: {' '.join(cmd)}")
        result = self._run(cmd, root)

        out = GrepResult(query=task.query)
        out.lines = [ln for ln in (result.stdout or "").splitlines() if ln]
        files = set()
        if task.filenames_only:
            files.update(out.lines)
            out.match_count = len(out.lines)
        elif task.count_matches:
            for line in out.lines:
                name, _, count = line.rpartition(":")
                if count.isdigit():
                    files.add(name or rel_path)
                    out.match_count += int(count)
        else:
            for line in out.lines:
                m = _MATCH_LINE_RE.match(line)
                if m:
                    out.matches.append(GrepMatch(m.group(1), int(m.group(2)), m.group(3)))
                    files.add(m.group(1))
            out.match_count = len(out.matches)
        out.file_count = len(files)
        out.truncated = task.max_results > 0 and out.match_count >= task.max_results

        if task.search_names:
            out.name_matches = self._search_names(task, rel_path, root)
        self.log.dbg(f"search: query={task.query!r} found {out.match_count} matches in {out.file_count} files")
        return out


def format_search_options(task: Task) -> str:
    options: List[str] = []
    if task.ignore_case:
        options.append("case-insensitive")
    if task.whole_word:
        options.append("whole words")
    if task.fixed_string:
        options.append("literal string")
    if task.search_names:
        options.append("filename search")
    if task.fuzzy_match:
        options.append("fuzzy matching")
    if task.combine_results:
        options.append("combined results")
    if task.file_types:
        options.append(f"file types: {','.join(task.file_types)}")
    if task.exclude_types:
        options.append(f"exclude types: {','.join(task.exclude_types)}")
    if task.glob_patterns:
        options.append(f"include: {','.join(task.glob_patterns)}")
    if task.context_before > 0 or task.context_after > 0:
        options.append(f"context: {task.context_before}/{task.context_after}")
    return ", ".join(options) if options else "default"


def format_search_results(result: GrepResult, task: Task) -> str:
    out = [
        f"🔍 Search Results for: '{task.query}'",
        f"📁 Path: {task.path}",
        f"📊 Summary: {result.match_count} matches in {result.file_count} files",
    ]
    if task.file_types:
        out.append(f"📋 File types: {', '.join(task.file_types)}")
    out.append(f"⚙️  Options: {format_search_options(task)}")
    out += ["", "─" * 50, ""]
    out += result.lines
    if result.truncated:
        out += ["", f"... (stopped at {task.max_results} matches per file)"]
    if result.name_matches:
        out += ["", f"📄 Filename matches ({len(result.name_matches)}):"]
        out += [f"  {p}" for p in result.name_matches]
    if result.match_count > 50:
        out += [
            "",
            "💡 Tip: Use more specific search terms or file type filters to narrow results:",
            '   🔧 SEARCH "specific phrase" type:go',
            "   🔧 SEARCH pattern glob:*.ts -glob:*.test.ts",
        ]
    return "\n".join(out)
