"""Task model and the result records produced while executing tasks."""

import time
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

TASK_TYPES = ("ReadFile", "EditFile", "ListDir", "RunShell", "Search", "Memory", "Todo")

INSERT_MODES = (
    "append",
    "insert_before",
    "insert_after",
    "replace",
    "replace_all",
    "insert_between",
)

# insert_before with this start_context targets line 1
BEGINNING_OF_FILE = "BEGINNING_OF_FILE"


@dataclass
class Task:
    """One operation requested by the model.

    Field names are the JSON wire names, so ``Task.from_dict(json.loads(s))``
    and ``task.to_dict()`` round-trip the task schema.
    """

    type: str
    path: str = ""

    # ReadFile
    max_lines: int = 0
    start_line: int = 0
    end_line: int = 0
    show_line_numbers: bool = False

    # EditFile
    diff: str = ""
    content: str = ""
    intent: str = ""
    loom_edit_command: bool = False
    target_line: int = 0
    target_start_line: int = 0
    target_end_line: int = 0
    context_validation: str = ""
    start_context: str = ""
    end_context: str = ""
    insert_mode: str = ""
    before_context: List[str] = field(default_factory=list)
    after_context: List[str] = field(default_factory=list)

    # RunShell
    command: str = ""
    timeout: int = 0

    # ListDir
    recursive: bool = False

    # Search
    query: str = ""
    file_types: List[str] = field(default_factory=list)
    exclude_types: List[str] = field(default_factory=list)
    glob_patterns: List[str] = field(default_factory=list)
    exclude_globs: List[str] = field(default_factory=list)
    ignore_case: bool = False
    whole_word: bool = False
    fixed_string: bool = False
    context_before: int = 0
    context_after: int = 0
    max_results: int = 0
    filenames_only: bool = False
    count_matches: bool = False
    search_hidden: bool = False
    search_names: bool = False
    fuzzy_match: bool = False
    combine_results: bool = False
    max_name_results: int = 0

    # Memory
    memory_operation: str = ""
    memory_id: str = ""
    memory_content: str = ""
    memory_tags: List[str] = field(default_factory=list)
    # None means "leave unchanged" on update
    memory_active: Optional[bool] = None
    memory_description: str = ""

    # Todo
    todo_operation: str = ""
    todo_titles: List[str] = field(default_factory=list)
    todo_item_order: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        for name in ("before_context", "after_context"):
            # Contexts may arrive as a single newline-joined string
            if isinstance(kwargs.get(name), str):
                kwargs[name] = kwargs[name].split("\n")
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type}
        for f in fields(self):
            if f.name == "type":
                continue
            value = getattr(self, f.name)
            if value is None:
                continue
            if f.name != "memory_active" and value in ("", [], False, 0):
                continue
            out[f.name] = value
        return out

    def edit_strategy(self) -> Optional[str]:
        """Name the single EditFile strategy this task selects, by field priority."""
        if self.type != "EditFile":
            return None
        if self.diff:
            return "unified_diff"
        if self.loom_edit_command:
            return "diff_block"
        if self.before_context or self.after_context:
            return "safe_edit"
        if self.insert_mode:
            return "anchored"
        if self.target_line > 0 or self.target_start_line > 0:
            return "line_range"
        if self.content:
            return "full_replacement"
        return None

    def is_destructive(self) -> bool:
        return self.type in ("EditFile", "RunShell")

    def requires_confirmation(self, policy=None) -> bool:
        if policy is None:
            return False
        return policy.requires_confirmation(self)

    def description(self) -> str:
        t = self.type
        if t == "ReadFile":
            if self.start_line > 0 and self.end_line > 0:
                return f"📖 Read {self.path} (lines {self.start_line}-{self.end_line})"
            if self.start_line > 0:
                if self.max_lines > 0:
                    return f"📖 Read {self.path} (from line {self.start_line}, max {self.max_lines} lines)"
                return f"📖 Read {self.path} (from line {self.start_line})"
            if self.max_lines > 0:
                return f"📖 Read {self.path} (max {self.max_lines} lines)"
            return f"📖 Read {self.path}"
        if t == "EditFile":
            if self.loom_edit_command:
                return f"✏️ Edit {self.path} (diff block)"
            if self.diff:
                return f"✏️ Edit {self.path} (unified diff)"
            if self.insert_mode:
                return f"✏️ Edit {self.path} ({self.insert_mode})"
            if self.content:
                return f"✏️ Edit {self.path} (create/replace content)"
            return f"✏️ Edit {self.path}"
        if t == "ListDir":
            if self.recursive:
                return f"📂 List directory {self.path} (recursive)"
            return f"📂 List directory {self.path}"
        if t == "RunShell":
            return f"🔧 Run command: {self.command}"
        if t == "Search":
            desc = f"🔍 Search for '{self.query}'"
            if self.path and self.path != ".":
                desc += f" in {self.path}"
            if self.file_types:
                desc += f" (types: {','.join(self.file_types)})"
            if self.ignore_case:
                desc += " (case-insensitive)"
            if self.whole_word:
                desc += " (whole words)"
            if self.search_names:
                if self.fuzzy_match:
                    desc += " (including fuzzy filename matches)"
                else:
                    desc += " (including filename matches)"
            return desc
        if t == "Memory":
            op = self.memory_operation.lower()
            if op in ("create", "update", "delete", "get"):
                return f"💾 {op.capitalize()} memory '{self.memory_id}'"
            if op == "list":
                if self.memory_active is True:
                    return "💾 List active memories"
                if self.memory_active is False:
                    return "💾 List inactive memories"
                return "💾 List all memories"
            return f"💾 Memory operation '{self.memory_operation}' on '{self.memory_id}'"
        if t == "Todo":
            op = self.todo_operation.lower()
            if op == "create":
                return f"📝 Create todo list ({len(self.todo_titles)} items)"
            if op in ("check", "uncheck"):
                return f"📝 {op.capitalize()} todo item {self.todo_item_order}"
            if op == "show":
                return "📝 Show todo list"
            if op == "clear":
                return "📝 Clear todo list"
            return f"📝 Todo operation '{self.todo_operation}'"
        return f"Unknown task: {t}"


@dataclass(frozen=True)
class EditSummary:
    file_path: str
    edit_type: str  # "create" | "modify"
    lines_before: int = 0
    lines_after: int = 0
    bytes_before: int = 0
    bytes_after: int = 0
    lines_added: int = 0
    lines_removed: int = 0
    lines_modified: int = 0
    is_identical_content: bool = False
    summary: str = ""

    @property
    def total_changes(self) -> int:
        return self.lines_added + self.lines_removed + self.lines_modified

    def compact_summary(self) -> str:
        if self.is_identical_content:
            return f"File {self.file_path} already contains the desired content - no changes needed"
        if self.edit_type == "create":
            return f"Created {self.file_path} ({self.lines_after} lines)"
        if self.total_changes == 0:
            return f"File {self.file_path} unchanged - content already matches"
        return f"Modified {self.file_path} ({self.total_changes} changes)"

    def llm_summary(self) -> str:
        out: List[str] = ["🔧 EDIT OPERATION COMPLETE", "=" * 41, ""]
        if self.is_identical_content:
            out += [
                f"📁 File: {self.file_path}",
                "✅ Status: SUCCESS (No changes needed)",
                "🔍 ANALYSIS: The file already contained the exact content you wanted to write.",
                "📝 RESULT: No changes were made because the content is already correct.",
                "",
                "📊 FILE STATE:",
                f"- Lines: {self.lines_after} (unchanged)",
                f"- Size: {self.bytes_after} bytes (unchanged)",
            ]
            return "\n".join(out) + "\n"

        out += [
            f"📁 File: {self.file_path}",
            "✅ Status: SUCCESS",
            f"🔄 Operation: {self.edit_type.upper()}",
            "",
            "📊 BEFORE/AFTER COMPARISON:",
            f"- Lines: {self.lines_before} → {self.lines_after} ({self.lines_after - self.lines_before:+d})",
            f"- Size: {self.bytes_before} → {self.bytes_after} bytes ({self.bytes_after - self.bytes_before:+d})",
            "",
            "📝 CHANGE BREAKDOWN:",
        ]
        if self.edit_type == "create":
            out.append(f"- Created new file with {self.lines_after} lines ({self.bytes_after} bytes)")
        elif self.total_changes == 0:
            out.append("- No line changes detected (content identical)")
        else:
            if self.lines_added:
                out.append(f"- Lines added: {self.lines_added}")
            if self.lines_removed:
                out.append(f"- Lines removed: {self.lines_removed}")
            if self.lines_modified:
                out.append(f"- Lines modified: {self.lines_modified}")
        if self.summary:
            out += ["", f"📋 Summary: {self.summary}"]
        return "\n".join(out) + "\n"


@dataclass
class ContextLine:
    line_number: int
    content: str
    is_target: bool = False


@dataclass
class ContextualError:
    """Edit failure described with enough file context for the model to retry.

    Built fluently::

        ContextualError("context_mismatch", msg, path).set_file_context(True, 40, 812)
            .add_context_lines(lines, 12, 3).add_required_action("Re-read the file")
    """

    type: str
    message: str
    file_path: str
    file_exists: bool = False
    current_lines: int = 0
    current_size: int = 0
    requested_action: str = ""
    requested_start: int = 0
    requested_end: int = 0
    context_lines: List[ContextLine] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    required_actions: List[str] = field(default_factory=list)

    def set_file_context(self, exists: bool, lines: int, size: int) -> "ContextualError":
        self.file_exists = exists
        self.current_lines = lines
        self.current_size = size
        return self

    def set_request_context(self, action: str, start: int, end: int) -> "ContextualError":
        self.requested_action = action
        self.requested_start = start
        self.requested_end = end
        return self

    def add_context_lines(self, file_lines: List[str], target_line: int, radius: int = 3) -> "ContextualError":
        if not file_lines:
            return self
        start = max(1, target_line - radius)
        end = min(len(file_lines), target_line + radius)
        for n in range(start, end + 1):
            self.context_lines.append(
                ContextLine(line_number=n, content=file_lines[n - 1], is_target=(n == target_line))
            )
        return self

    def add_suggestion(self, suggestion: str) -> "ContextualError":
        self.suggestions.append(suggestion)
        return self

    def add_required_action(self, action: str) -> "ContextualError":
        self.required_actions.append(action)
        return self

    def format_for_llm(self) -> str:
        out: List[str] = [
            "🚫 EDIT OPERATION FAILED",
            "=" * 41,
            "",
            f"❌ Error Type: {self.type.upper()}",
            f"📁 File: {self.file_path}",
            f"💬 Message: {self.message}",
            "",
            "📊 CURRENT FILE STATE:",
        ]
        if self.file_exists:
            out.append(f"✅ File exists: {self.current_lines} lines, {self.current_size} bytes")
        else:
            out.append("❌ File does not exist")
        if self.requested_action:
            out.append(
                f"🔧 Requested: {self.requested_action} lines {self.requested_start}-{self.requested_end}"
            )
        if self.context_lines:
            out += ["", "📝 FILE CONTENT AROUND ERROR:"]
            for cl in self.context_lines:
                prefix = "❌" if cl.is_target else "  "
                out.append(f"{prefix} Line {cl.line_number}: {cl.content}")
        if self.suggestions:
            out += ["", "💡 SUGGESTED CORRECTIONS:"]
            out += [f"{i}. {s}" for i, s in enumerate(self.suggestions, 1)]
        if self.required_actions:
            out += ["", "🎯 REQUIRED ACTIONS:"]
            out += [f"{i}. {a}" for i, a in enumerate(self.required_actions, 1)]
        return "\n".join(out) + "\n"


@dataclass(frozen=True)
class TaskResponse:
    task: Task
    success: bool
    output: str = ""
    # Full content for the model (file text, command output); output is the short status
    actual_content: str = ""
    error: str = ""
    edit_summary: Optional[EditSummary] = None
    contextual_error: Optional[ContextualError] = None
    diff_preview: str = ""

    def llm_summary(self) -> str:
        if self.contextual_error is not None:
            return self.contextual_error.format_for_llm()
        if self.edit_summary is not None:
            return self.edit_summary.llm_summary()
        return ""


@dataclass
class TaskExecution:
    tasks: List[Task] = field(default_factory=list)
    responses: List[TaskResponse] = field(default_factory=list)
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None
    status: str = "running"

    def close(self) -> None:
        self.end_time = time.time()
        self.status = "completed"

    def is_task_completed(self, index: int) -> bool:
        if index < 0 or index >= len(self.responses):
            return False
        return self.responses[index].success

    def history(self) -> List[str]:
        out: List[str] = []
        for task, resp in zip(self.tasks, self.responses):
            entry = f"{'✅' if resp.success else '❌'} {task.description()}"
            if not resp.success and resp.error:
                entry += f" - {resp.error}"
            out.append(entry)
        return out

    def summary(self) -> str:
        end = self.end_time if self.end_time is not None else time.time()
        ok = sum(1 for r in self.responses if r.success)
        lines = [
            f"📋 Task Execution Summary ({len(self.tasks)} tasks)",
            f"⏱️  Duration: {end - self.start_time:.2f}s",
            f"📊 Status: {self.status}",
            "",
        ]
        for task, resp in zip(self.tasks, self.responses):
            line = f"{'✅' if resp.success else '❌'} {task.description()}"
            if not resp.success and resp.error:
                line += f" - Error: {resp.error}"
            lines.append(line)
        lines += ["", f"🏁 Results: {ok} successful, {len(self.responses) - ok} failed"]
        return "\n".join(lines) + "\n"


class ConfirmationPolicy:
    """Decides whether a task must be held back instead of executed."""

    def requires_confirmation(self, task: Task) -> bool:
        raise NotImplementedError


class NeverConfirm(ConfirmationPolicy):
    def requires_confirmation(self, task: Task) -> bool:
        return False


class DryRunPolicy(ConfirmationPolicy):
    """Holds back destructive tasks; edits are still prepared so the preview is reported."""

    def requires_confirmation(self, task: Task) -> bool:
        return task.is_destructive()
