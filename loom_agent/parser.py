"""Turn a model reply into an ordered list of validated tasks.

Stages run in order and the first one that yields tasks wins:

1. LOOM_EDIT diff blocks
2. natural-language directives (``🔧 READ path``)
3. fenced JSON (```` ```json ```` blocks)
4. bare JSON lines (``{"type": "ReadFile", ...}``)
"""

import dataclasses
import json
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import DEFAULT_VALIDATED_TIMEOUT
from .diffblocks import parse_edit_blocks
from .errors import ParseError, ValidationError
from .models import INSERT_MODES, TASK_TYPES, Task
from .nl_parser import parse_directives
from .utils import DebugLog

# every fenced block, so an earlier ```python block cannot pair up with a json fence
_FENCED_RE = re.compile(r"```([^\n`]*)\n(.*?)\n?```", re.S)
_JSON_INFO = ("", "json")
_BARE_TASK_RE = re.compile(
    r'\{"type":\s*"(?:ReadFile|EditFile|ListDir|RunShell|Search|Memory|Todo)"'
)

MEMORY_OPERATIONS = ("create", "update", "delete", "get", "list")
TODO_OPERATIONS = ("create", "check", "uncheck", "show", "clear")


# ---------- Validation ----------


def _require(cond: bool, message: str, field: str) -> None:
    if not cond:
        raise ValidationError(message, field=field)


def _validate_read(task: Task) -> Task:
    _require(bool(task.path), "ReadFile requires path", "path")
    _require(task.max_lines >= 0, "max_lines must be non-negative", "max_lines")
    _require(task.start_line >= 0 and task.end_line >= 0, "start_line and end_line must be non-negative", "start_line")
    if task.start_line > 0 and task.end_line > 0:
        _require(task.start_line <= task.end_line, "start_line must be <= end_line", "end_line")
    return task


def _validate_edit(task: Task) -> Task:
    _require(bool(task.path), "EditFile requires path", "path")
    if task.insert_mode == "search_replace":
        task = dataclasses.replace(task, insert_mode="replace_all")
    mode = task.insert_mode
    if mode:
        _require(mode in INSERT_MODES, f"unknown insert_mode: {mode}", "insert_mode")

    for name in ("target_line", "target_start_line", "target_end_line"):
        _require(getattr(task, name) >= 0, f"{name} must be non-negative", name)
    if task.target_start_line > 0 and task.target_end_line > 0:
        _require(
            task.target_start_line <= task.target_end_line,
            "target_start_line must be <= target_end_line",
            "target_end_line",
        )

    if task.before_context or task.after_context:
        has_before = any(ln.strip() for ln in task.before_context)
        has_after = any(ln.strip() for ln in task.after_context)
        _require(has_before, "SafeEdit requires before_context", "before_context")
        _require(has_after, "SafeEdit requires after_context", "after_context")

    if mode in ("replace_all", "insert_between"):
        _require(bool(task.start_context), f"{mode} requires start_context", "start_context")
        if mode == "insert_between":
            _require(bool(task.end_context), "insert_between requires end_context", "end_context")
        else:
            _require(
                bool(task.end_context or task.content),
                "replace_all requires the replacement text (end_context)",
                "end_context",
            )
    elif mode in ("insert_before", "insert_after", "replace"):
        _require(bool(task.start_context), f"{mode} requires start_context", "start_context")

    has_payload = bool(
        task.diff
        or task.content
        or (mode == "replace_all" and task.start_context and task.end_context)
        # SafeEdit with an empty CHANGE section deletes the target lines
        or (task.before_context and (task.target_line or task.target_start_line))
    )
    _require(has_payload, "EditFile requires a diff or content", "content")
    return task


def _validate_list(task: Task) -> Task:
    if not task.path:
        task = dataclasses.replace(task, path=".")
    return task


def _validate_shell(task: Task) -> Task:
    _require(bool(task.command.strip()), "RunShell requires command", "command")
    if task.timeout <= 0:
        task = dataclasses.replace(task, timeout=DEFAULT_VALIDATED_TIMEOUT)
    return task


def _validate_search(task: Task) -> Task:
    _require(bool(task.query), "Search requires query", "query")
    changes: Dict[str, Any] = {}
    if not task.path:
        changes["path"] = "."
    if task.max_results <= 0:
        changes["max_results"] = 100
    search_names = task.search_names or task.fuzzy_match
    if search_names != task.search_names:
        changes["search_names"] = True
    if search_names and task.max_name_results <= 0:
        changes["max_name_results"] = 50
    return dataclasses.replace(task, **changes) if changes else task


def _validate_memory(task: Task) -> Task:
    _require(
        bool(task.memory_operation),
        "Memory requires operation (create, update, delete, get, list)",
        "memory_operation",
    )
    op = task.memory_operation.lower()
    if op == "create":
        _require(bool(task.memory_id), "memory create requires ID", "memory_id")
        _require(bool(task.memory_content), "memory create requires content", "memory_content")
    elif op == "update":
        _require(bool(task.memory_id), "memory update requires ID", "memory_id")
        _require(
            bool(task.memory_content or task.memory_tags or task.memory_description)
            or task.memory_active is not None,
            "memory update requires at least one field to update (content, tags, active, description)",
            "memory_content",
        )
    elif op in ("delete", "get"):
        _require(bool(task.memory_id), f"memory {op} requires ID", "memory_id")
    elif op != "list":
        raise ValidationError(
            f"unknown memory operation: {op} (supported: {', '.join(MEMORY_OPERATIONS)})",
            field="memory_operation",
        )
    return dataclasses.replace(task, memory_operation=op) if op != task.memory_operation else task


def _validate_todo(task: Task) -> Task:
    op = task.todo_operation.lower()
    if op == "create":
        titles = [t for t in task.todo_titles if t.strip()]
        _require(2 <= len(titles) <= 10, "todo create requires 2-10 titles", "todo_titles")
    elif op in ("check", "uncheck"):
        _require(task.todo_item_order >= 1, f"todo {op} requires an item number >= 1", "todo_item_order")
    elif op not in ("show", "clear"):
        raise ValidationError(
            f"unknown todo operation: {op or '(none)'} (supported: {', '.join(TODO_OPERATIONS)})",
            field="todo_operation",
        )
    return dataclasses.replace(task, todo_operation=op) if op != task.todo_operation else task


_VALIDATORS: Dict[str, Callable[[Task], Task]] = {
    "ReadFile": _validate_read,
    "EditFile": _validate_edit,
    "ListDir": _validate_list,
    "RunShell": _validate_shell,
    "Search": _validate_search,
    "Memory": _validate_memory,
    "Todo": _validate_todo,
}


def validate_task(task: Task) -> Task:
    """Return task with defaults filled in, or raise ValidationError."""
    validator = _VALIDATORS.get(task.type)
    if validator is None:
        raise ValidationError(f"unknown task type: {task.type}", field="type")
    return validator(task)


# ---------- JSON decoding ----------


def _decode_task(data: Any) -> Task:
    if not isinstance(data, dict):
        raise ParseError(f"task must be a JSON object, got {type(data).__name__}")
    task_type = data.get("type")
    if task_type not in TASK_TYPES:
        raise ParseError(f"unknown task type: {task_type!r}")
    try:
        return Task.from_dict(data)
    except (TypeError, AttributeError) as exc:
        raise ParseError(f"malformed {task_type} task: {exc}") from exc


def _decode_payload(data: Any) -> List[Task]:
    """A ``{"tasks": [...]}`` list when non-empty, else a single task object."""
    if isinstance(data, dict) and isinstance(data.get("tasks"), list) and data["tasks"]:
        return [_decode_task(item) for item in data["tasks"]]
    return [_decode_task(data)]


def _looks_like_task(body: str) -> bool:
    s = body.strip()
    return s.startswith("{") and ('"type"' in s or '"tasks"' in s)


# ---------- Stages ----------


def _diff_block_stage(text: str, log: DebugLog) -> List[Task]:
    tasks = []
    for block in parse_edit_blocks(text):
        tasks.append(
            Task(
                type="EditFile",
                path=block.path,
                content=f">>LOOM_EDIT file={block.path}\n{block.diff_text}\n<<LOOM_EDIT",
                loom_edit_command=True,
            )
        )
    return tasks


def _natural_language_stage(text: str, log: DebugLog) -> List[Task]:
    return parse_directives(text, log=log)


def _fenced_json_stage(text: str, log: DebugLog) -> List[Task]:
    for m in _FENCED_RE.finditer(text):
        if m.group(1).strip().lower() not in _JSON_INFO:
            continue
        body = m.group(2).strip()
        if not _looks_like_task(body):
            continue
        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise ParseError(f"invalid JSON in task block: {exc}") from exc
        return _decode_payload(data)
    return []


def _bare_json_stage(text: str, log: DebugLog) -> List[Task]:
    for raw in text.split("\n"):
        line = raw.strip()
        if not line.startswith("{") or not _BARE_TASK_RE.search(line):
            continue
        try:
            tasks = [validate_task(t) for t in _decode_payload(json.loads(line))]
        except (json.JSONDecodeError, ParseError, ValidationError) as exc:
            log.dbg(f"bare json candidate rejected: {exc}")
            continue
        return tasks
    return []


_STAGES: List[Tuple[str, Callable[[str, DebugLog], List[Task]]]] = [
    ("diff_block", _diff_block_stage),
    ("natural_language", _natural_language_stage),
    ("fenced_json", _fenced_json_stage),
    ("bare_json", _bare_json_stage),
]


def parse_tasks(text: str, log: Optional[DebugLog] = None) -> Optional[List[Task]]:
    """Tasks from the first stage that finds any, validated; None when no stage does.

    Raises ParseError for a malformed task block and ValidationError for a
    task with missing or invalid fields.
    """
    log = log or DebugLog.disabled()
    if not text or not text.strip():
        return None
    for name, stage in _STAGES:
        tasks = stage(text, log)
        if not tasks:
            continue
        validated = [validate_task(t) for t in tasks]
        log.dbg(f"parse: stage={name} tasks={len(validated)}")
        return validated
    log.dbg("parse: no tasks found")
    return None
