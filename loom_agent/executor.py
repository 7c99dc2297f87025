"""Executes one validated Task against the workspace and reports a TaskResponse.

Every path is resolved through the Workspace before anything touches the
filesystem. Engine errors are turned into failed responses here and never
escape execute().
"""

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .config import Config
from .diffblocks import DiffBlockProcessor, GitApplyPatcher, PatchApplier
from .edits import EditEngine
from .errors import EditSafetyError, LoomError, ShellTimeout
from .files import Workspace, format_file_size, is_binary
from .ignore import DefaultIgnoreMatcher, IgnoreMatcher
from .models import ConfirmationPolicy, DryRunPolicy, NeverConfirm, Task, TaskResponse
from .search import RipgrepSearch, Searcher, format_search_options, format_search_results
from .secrets import redact_secrets
from .utils import DebugLog, tool_call_repr

PATH_TASKS = ("ReadFile", "EditFile", "ListDir", "Search")


class MemoryStore:
    """Memory record CRUD; handle() returns the text shown to the model or raises LoomError."""

    def handle(self, task: Task) -> str:
        raise NotImplementedError


class TodoStore:
    def handle(self, task: Task) -> str:
        raise NotImplementedError


@dataclass
class _ListState:
    count: int = 0
    size: int = 0
    truncated: bool = False


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


class Executor:
    def __init__(
        self,
        config: Config,
        workspace: Optional[Workspace] = None,
        log: Optional[DebugLog] = None,
        ignore_matcher: Optional[IgnoreMatcher] = None,
        patcher: Optional[PatchApplier] = None,
        searcher: Optional[Searcher] = None,
        memory_store: Optional[MemoryStore] = None,
        todo_store: Optional[TodoStore] = None,
        confirmation_policy: Optional[ConfirmationPolicy] = None,
    ):
        self.config = config
        self.workspace = workspace or Workspace(config.workspace)
        self.log = log or DebugLog.from_config(config)
        self.ignore_matcher = ignore_matcher or DefaultIgnoreMatcher(self.workspace.root)
        self.searcher = searcher or RipgrepSearch(timeout=config.search_timeout, log=self.log)
        self.memory_store = memory_store
        self.todo_store = todo_store
        if confirmation_policy is None:
            confirmation_policy = DryRunPolicy() if config.dry_run else NeverConfirm()
        self.confirmation_policy = confirmation_policy
        self.edits = EditEngine(self.workspace, self.log)
        self.diff_processor = DiffBlockProcessor(
            self.workspace,
            patcher or GitApplyPatcher(timeout=config.patch_timeout, log=self.log),
            self.log,
        )
        self._handlers: Dict[str, Callable[[Task, Optional[Path]], TaskResponse]] = {
            "ReadFile": self._read_file,
            "EditFile": self._edit_file,
            "ListDir": self._list_dir,
            "RunShell": self._run_shell,
            "Search": self._search,
            "Memory": self._memory,
            "Todo": self._todo,
        }

    def execute(self, task: Task) -> TaskResponse:
        handler = self._handlers.get(task.type)
        if handler is None:
            return TaskResponse(task=task, success=False, error=f"unknown task type: {task.type}")
        self.log.tool(tool_call_repr(task.type, task.to_dict()))
        try:
            # any path a task carries must stay inside the workspace
            target = None
            if task.path or task.type in PATH_TASKS:
                target = self.workspace.resolve(task.path or ".")
            return handler(task, target)
        except EditSafetyError as exc:
            self.log.dbg(f"execute {task.type}: edit refused: {exc}")
            return TaskResponse(
                task=task, success=False, error=str(exc), contextual_error=exc.contextual_error
            )
        except ShellTimeout as exc:
            return TaskResponse(
                task=task, success=False, output=exc.output, actual_content=exc.output, error=str(exc)
            )
        except LoomError as exc:
            self.log.dbg(f"execute {task.type}: {type(exc).__name__}: {exc}")
            return TaskResponse(task=task, success=False, error=str(exc))
        except OSError as exc:
            self.log.dbg(f"execute {task.type}: OSError: {exc}")
            return TaskResponse(task=task, success=False, error=f"{task.type} failed: {exc}")

    def _fail(self, task: Task, error: str) -> TaskResponse:
        return TaskResponse(task=task, success=False, error=error)

    def _held_back(self, task: Task) -> bool:
        return task.requires_confirmation(self.confirmation_policy)

    # ---------- ReadFile ----------

    def _read_file(self, task: Task, target: Path) -> TaskResponse:
        p = task.path
        if not target.exists():
            return self._fail(task, f"file not found: {p}")
        if target.is_dir():
            return self._fail(task, f"path is a directory: {p}")
        size = target.stat().st_size
        if size > self.config.max_file_size:
            return self._fail(
                task,
                f"file too large: {p} ({size / 1024 / 1024:.2f} MB > "
                f"{self.config.max_file_size / 1024 / 1024:.2f} MB)",
            )
        if is_binary(target):
            return self._fail(task, f"cannot read binary file: {p}")

        lines = target.read_text(encoding="utf-8", errors="replace").splitlines()
        total = len(lines)
        if task.start_line > total:
            return self._fail(task, f"file {p} has only {total} lines, but requested start line {task.start_line}")

        warning = ""
        end = task.end_line
        if end > total:
            warning = (
                f"Warning: file {p} has only {total} lines, but requested end line {end}. "
                "Adjusting to read all available lines."
            )
            end = total
        start = task.start_line if task.start_line > 0 else 1
        max_lines = task.max_lines if task.max_lines > 0 else self.config.read_max_lines

        effective_end = end if end > 0 else total
        if end > 0 and end - start + 1 > max_lines:
            effective_end = start + max_lines - 1
        selected = lines[start - 1 : min(effective_end, start - 1 + max_lines)]
        lines_read = len(selected)

        parts: List[str] = []
        if start > 1:
            parts.append(f"... (skipped first {start - 1} lines)\n")
        parts.append("\n".join(f"{n:4d}: {text}" for n, text in enumerate(selected, start)))
        last = start + lines_read - 1
        remaining = total - last
        if remaining > 0:
            next_start = last + 1
            suggested_end = min(next_start + max_lines - 1, total)
            parts.append(f"\n... (truncated after {lines_read} lines)")
            parts.append(
                f"\n\n[FILE CONTINUES: {remaining} more lines remaining (lines {next_start}-{total})"
                f'\nTo continue reading, use: {{"type": "ReadFile", "path": "{p}", '
                f'"start_line": {next_start}, "end_line": {suggested_end}}}]'
            )
        body = redact_secrets("".join(parts))
        actual = f"File: {p}\nLines: {total}\n\n{body}"

        if task.start_line > 0 or task.end_line > 0:
            status = f"Reading file: {p} (lines {start}-{last}, {lines_read} lines read, {total} total lines)"
        else:
            status = f"Reading file: {p} ({lines_read} lines read, {total} total lines)"
        if remaining > 0:
            status += f", {remaining} more lines available"
        output = f"{warning}\n{status}" if warning else status
        return TaskResponse(task=task, success=True, output=output, actual_content=actual)

    # ---------- EditFile ----------

    def _edit_file(self, task: Task, target: Path) -> TaskResponse:
        dry_run = self._held_back(task)
        if task.edit_strategy() == "diff_block":
            return self._diff_block(task, dry_run)

        prepared = self.edits.prepare(task)
        summary = prepared.summary
        if dry_run:
            return TaskResponse(
                task=task,
                success=True,
                output=f"Edit prepared for {prepared.path} (dry run, not applied) - {summary.compact_summary()}",
                actual_content=prepared.diff_preview or summary.compact_summary(),
                edit_summary=summary,
                diff_preview=prepared.diff_preview,
            )

        self.edits.apply(prepared)
        if summary.is_identical_content:
            output = summary.compact_summary()
        elif not prepared.exists:
            output = f"File created: {prepared.path}"
        elif prepared.strategy == "full_replacement":
            output = f"File replaced: {prepared.path} - {summary.compact_summary()}"
        else:
            label = task.insert_mode if prepared.strategy == "anchored" else prepared.strategy
            output = f"File edited: {prepared.path} ({label}) - {summary.compact_summary()}"
        actual = summary.llm_summary()
        if prepared.diff_preview:
            actual += "\n" + prepared.diff_preview
        return TaskResponse(
            task=task,
            success=True,
            output=output,
            actual_content=actual,
            edit_summary=summary,
            diff_preview=prepared.diff_preview,
        )

    def _diff_block(self, task: Task, dry_run: bool) -> TaskResponse:
        result = self.diff_processor.process(task.content, dry_run=dry_run)
        if not result.outcomes:
            return self._fail(task, "no LOOM_EDIT block with a file= target found in the task content")
        message = result.format_message()
        if dry_run:
            message += "\n(dry run, nothing applied)"
        errors = [o.error for o in result.outcomes if not o.success]
        return TaskResponse(
            task=task,
            success=result.success,
            output=message,
            actual_content=message,
            error="\n".join(errors),
        )

    # ---------- ListDir ----------

    def _walk(self, directory: Path, depth: int, recursive: bool, out: List[str], state: _ListState) -> None:
        for entry in sorted(directory.iterdir(), key=lambda e: e.name):
            if state.count >= self.config.list_max_files or state.size >= self.config.list_max_output:
                state.truncated = True
                return
            is_dir = entry.is_dir()
            if self.ignore_matcher.should_skip(self.workspace.relative(entry), is_dir):
                continue
            indent = "  " * depth
            if is_dir:
                line = f"{indent}📁 {entry.name}/"
            else:
                line = f"{indent}📄 {entry.name} ({format_file_size(entry.stat().st_size)})"
            out.append(line)
            state.count += 1
            state.size += len(line) + 1
            if is_dir and recursive and not entry.is_symlink() and depth + 1 < self.config.list_max_depth:
                self._walk(entry, depth + 1, recursive, out, state)
                if state.truncated:
                    return

    def _list_dir(self, task: Task, target: Path) -> TaskResponse:
        p = task.path or "."
        if not target.exists():
            return self._fail(task, f"directory not found: {p}")
        if not target.is_dir():
            return self._fail(task, f"path is not a directory: {p}")

        lines: List[str] = []
        state = _ListState()
        self._walk(target, 0, task.recursive, lines, state)
        listing = f"Directory listing for {p}:\n\n" + "\n".join(lines)
        if lines:
            listing += "\n"
        if state.truncated:
            listing += (
                f"\n⚠️  Listing truncated at {state.count} items (limits: {self.config.list_max_files} files, "
                f"{self.config.list_max_output} chars, {self.config.list_max_depth} depth)\n"
            )
        status = f"Reading folder structure: {p} ({state.count} items"
        if state.truncated:
            status += ", truncated"
        status += ")"
        return TaskResponse(task=task, success=True, output=status, actual_content=listing)

    # ---------- RunShell ----------

    def _run_shell(self, task: Task, target: Optional[Path]) -> TaskResponse:
        if not self.config.enable_shell:
            return self._fail(task, "shell execution is disabled (set enable_shell: true in config)")
        if self._held_back(task):
            msg = f"Command not run (dry run): {task.command}"
            return TaskResponse(task=task, success=True, output=msg, actual_content=msg)

        timeout = task.timeout if task.timeout > 0 else self.config.shell_timeout
        try:
            result = subprocess.run(
                ["sh", "-c", task.command],
                capture_output=True,
                text=True,
                cwd=str(self.workspace.root),
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            partial = self._format_shell(task.command, -1, _decode(exc.stdout), _decode(exc.stderr))
            raise ShellTimeout(timeout, output=partial) from exc

        output = self._format_shell(task.command, result.returncode, result.stdout, result.stderr)
        if result.returncode != 0:
            return TaskResponse(
                task=task,
                success=False,
                output=output,
                actual_content=output,
                error=f"command failed: exit status {result.returncode}",
            )
        return TaskResponse(task=task, success=True, output=output, actual_content=output)

    @staticmethod
    def _format_shell(command: str, code: int, stdout: str, stderr: str) -> str:
        out = f"Command: {command}\nExit code: {code}\n\n"
        if stdout:
            out += f"STDOUT:\n{stdout}\n"
        if stderr:
            out += f"STDERR:\n{stderr}\n"
        return out

    # ---------- Search / Memory / Todo ----------

    def _search(self, task: Task, target: Path) -> TaskResponse:
        if self.searcher is None:
            return self._fail(task, "search is not configured")
        if not target.exists():
            return self._fail(task, f"search path not found: {task.path}")
        result = self.searcher.search(task, target, self.workspace.root)
        q = task.query
        if result.empty:
            return TaskResponse(
                task=task,
                success=True,
                output=f"Search completed: '{q}' - No matches found",
                actual_content=(
                    f"No matches found for search query: '{q}'\n\nSearch parameters:\n"
                    f"- Path: {task.path}\n- Options: {format_search_options(task)}"
                ),
            )
        if task.filenames_only:
            output = f"Search completed: '{q}' - Found {result.file_count} files with matches"
        elif task.count_matches:
            output = f"Search completed: '{q}' - Found {result.match_count} total matches"
        else:
            output = f"Search completed: '{q}' - Found {result.match_count} matches in {result.file_count} files"
        if result.name_matches:
            output += f", {len(result.name_matches)} filename matches"
        actual = redact_secrets(format_search_results(result, task))
        return TaskResponse(task=task, success=True, output=output, actual_content=actual)

    def _memory(self, task: Task, target: Optional[Path]) -> TaskResponse:
        if self.memory_store is None:
            return self._fail(task, "memory is not configured")
        text = self.memory_store.handle(task)
        return TaskResponse(task=task, success=True, output=text, actual_content=text)

    def _todo(self, task: Task, target: Optional[Path]) -> TaskResponse:
        if self.todo_store is None:
            return self._fail(task, "todo is not configured")
        text = self.todo_store.handle(task)
        return TaskResponse(task=task, success=True, output=text, actual_content=text)
