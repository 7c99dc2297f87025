"""Natural-language directives: ``🔧 READ main.py (lines 1-40)`` and friends.

Each verb has its own small grammar; see the parse_*_args functions. Payloads
for EDIT and MEMORY may follow on the lines after the directive.
"""

import re
from typing import Callable, Dict, List, Optional, Tuple

from .classifiers import (
    extract_content_from_json,
    is_conversational_text,
    is_descriptive_text,
    is_structured_content_line,
)
from .config import DEFAULT_DIRECTIVE_TIMEOUT, DEFAULT_MAX_LINES
from .models import BEGINNING_OF_FILE, Task
from .utils import DebugLog

VERBS = ("READ", "EDIT", "LIST", "RUN", "SEARCH", "MEMORY", "TODO")

_EMOJI_DIRECTIVE_RE = re.compile(
    r"^(?:🔧|📖|📂|✏️|🔍|💾|📝)\s+(READ|EDIT|LIST|RUN|SEARCH|MEMORY|TODO)\s+(.+)"
)
_SIMPLE_DIRECTIVE_RE = re.compile(r"^(read|edit|list|run|search|memory|todo)\s+(.+)", re.I)
# any directive line, used to end payload scans
_ANY_DIRECTIVE_RE = re.compile(
    r"^(?:(?:🔧|📖|📂|✏️|🔍|💾|📝)\s+)?(?:READ|EDIT|LIST|RUN|SEARCH|MEMORY|TODO)\s+"
)

# ---------- READ ----------

_OPTIONS_RE = re.compile(r"^(.+?)\s*\((.+)\)$")
_MAX_RE = re.compile(r"max[:]*\s*(\d+)")
_FIRST_RE = re.compile(r"first\s+(\d+)\s+lines")
_RANGE_RE = re.compile(r"lines[:\s]*\s*(\d+)-(\d+)")
_WITH_NUMBERS_RE = re.compile(r"\s+with\s+(?:line\s+)?numbers?", re.I)
_NUMBERED_RE = re.compile(r"\s+numbered", re.I)


def parse_read_args(args: str) -> Task:
    task = Task(type="ReadFile")
    m = _OPTIONS_RE.match(args)
    if m:
        task.path = m.group(1).strip()
        options = m.group(2).strip()
        mm = _MAX_RE.search(options)
        if mm:
            task.max_lines = int(mm.group(1))
        mm = _FIRST_RE.search(options)
        if mm:
            task.max_lines = int(mm.group(1))
        mm = _RANGE_RE.search(options)
        if mm:
            task.start_line = int(mm.group(1))
            task.end_line = int(mm.group(2))
        low = options.lower()
        if "line numbers" in low or "with numbers" in low or "numbered" in low:
            task.show_line_numbers = True
    else:
        low = args.lower()
        if " with line numbers" in low or " with numbers" in low or " numbered" in low:
            task.show_line_numbers = True
            args = _NUMBERED_RE.sub("", _WITH_NUMBERS_RE.sub("", args))
        task.path = args.strip()

    if task.max_lines == 0 and task.start_line == 0 and task.end_line == 0:
        task.max_lines = DEFAULT_MAX_LINES
    return task


# ---------- EDIT ----------

_ARROW_RE = re.compile(r"^(.+?)\s*(?:→|->)\s*(.+)$")
_PATH_LINE_RE = re.compile(r"^(.+):(\d+)$")
_PATH_RANGE_RE = re.compile(r"^(.+):(\d+)-(\d+)$")

_Q = r"""["']?"""
_SEARCH_REPLACE_RE = re.compile(
    r"(?i)(?:search(?:[\s_-]*)replace|search\s+and\s+replace)\s+"
    + _Q + r"""([^"']+?)""" + _Q + r"\s+with\s+" + _Q + r"""([^"']+?)""" + _Q + "$"
)
_REPLACE_ALL_RE = re.compile(
    r"(?i)replace\s+all\s+(?:occurrences\s+of\s+)?"
    + _Q + r"""([^"']+?)""" + _Q + r"\s+with\s+" + _Q + r"""([^"']+?)""" + _Q + "$"
)
_FIND_REPLACE_RE = re.compile(
    r"(?i)(?:find\s+(?:and\s+)?replace|find)\s+"
    + _Q + r"""([^"']+?)""" + _Q + r"\s+(?:and\s+replace\s+)?with\s+"
    + _Q + r"""([^"']+?)""" + _Q + "$"
)
_AFTER_RE = re.compile(r"""(?i)(?:add|insert)\s+.+?\s+after\s+["']?([^"']+)["']?""")
_BEFORE_RE = re.compile(r"""(?i)(?:add|insert)\s+.+?\s+before\s+["']?([^"']+)["']?""")
_REPLACE_RE = re.compile(r"""(?i)replace\s+["']?([^"']+)["']?""")
_BETWEEN_RE = re.compile(
    r"""(?i)(?:add|insert)\s+.+?\s+between\s+["']?([^"']+)["']?\s+and\s+["']?([^"']+)["']?"""
)


def _parse_path_with_lines(task: Task, text: str) -> None:
    m = _PATH_LINE_RE.match(text)
    if m:
        task.path = m.group(1).strip()
        task.target_line = int(m.group(2))
        return
    m = _PATH_RANGE_RE.match(text)
    if m:
        task.path = m.group(1).strip()
        task.target_start_line = int(m.group(2))
        task.target_end_line = int(m.group(3))
        return
    task.path = text.strip()


def parse_edit_context(task: Task, description: str) -> None:
    """Mine an EDIT description for anchored-edit fields; first phrasing wins."""
    for pattern in (_SEARCH_REPLACE_RE, _REPLACE_ALL_RE, _FIND_REPLACE_RE):
        m = pattern.search(description)
        if m:
            task.start_context = m.group(1).strip()
            task.end_context = m.group(2).strip()
            task.content = task.end_context
            task.insert_mode = "replace_all"
            return

    m = _AFTER_RE.search(description)
    if m:
        task.start_context = m.group(1).strip()
        task.insert_mode = "insert_after"
        return
    m = _BEFORE_RE.search(description)
    if m:
        task.start_context = m.group(1).strip()
        task.insert_mode = "insert_before"
        return
    m = _REPLACE_RE.search(description)
    if m:
        task.start_context = m.group(1).strip()
        task.insert_mode = "replace"
        return

    desc = description.lower()
    if "at the end" in desc or "append" in desc:
        task.insert_mode = "append"
        return
    if "at the beginning" in desc or "prepend" in desc or "at the top" in desc:
        task.insert_mode = "insert_before"
        task.start_context = BEGINNING_OF_FILE
        return

    m = _BETWEEN_RE.search(description)
    if m:
        task.start_context = m.group(1).strip()
        task.end_context = m.group(2).strip()
        task.insert_mode = "insert_between"


def parse_edit_args(args: str) -> Task:
    task = Task(type="EditFile")
    m = _ARROW_RE.match(args)
    if m:
        _parse_path_with_lines(task, m.group(1).strip())
        task.intent = m.group(2).strip()
        parse_edit_context(task, task.intent)
    else:
        _parse_path_with_lines(task, args.strip())
    return task


# ---------- LIST / RUN ----------

_RECURSIVE_SUFFIX_RE = re.compile(r"\s+recursively?\s*$", re.I)
_TIMEOUT_RE = re.compile(r"^(.+?)\s*\(timeout:\s*(\d+)s?\)$")


def parse_list_args(args: str) -> Task:
    task = Task(type="ListDir")
    if "recursive" in args.lower():
        task.recursive = True
        args = _RECURSIVE_SUFFIX_RE.sub("", args)
    task.path = args.strip() or "."
    return task


def parse_run_args(args: str) -> Task:
    task = Task(type="RunShell")
    m = _TIMEOUT_RE.match(args)
    if m:
        task.command = m.group(1).strip()
        task.timeout = int(m.group(2))
    else:
        task.command = args.strip()
    if task.timeout == 0:
        task.timeout = DEFAULT_DIRECTIVE_TIMEOUT
    return task


# ---------- SEARCH ----------


def _unquote(s: str) -> str:
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ("'", '"'):
        return s[1:-1]
    return s


def _to_int(s: str) -> Optional[int]:
    try:
        return int(s)
    except ValueError:
        return None


def parse_search_args(args: str) -> Optional[Task]:
    parts = args.split()
    if not parts:
        return None
    task = Task(type="Search", query=_unquote(parts[0]))
    for raw in parts[1:]:
        part = raw.lower()
        # option keys are case-insensitive; glob and directory values keep their case
        value = raw[raw.index(":") + 1 :] if ":" in raw else ""
        if part.startswith("type:"):
            task.file_types = part[len("type:"):].split(",")
        elif part.startswith("-type:"):
            task.exclude_types = part[len("-type:"):].split(",")
        elif part.startswith("glob:"):
            task.glob_patterns.append(value)
        elif part.startswith("-glob:"):
            task.exclude_globs.append(value)
        elif part.startswith("context:"):
            n = _to_int(value)
            if n is not None:
                task.context_before = task.context_after = n
        elif part.startswith("max:"):
            n = _to_int(value)
            if n is not None:
                task.max_results = n
        elif part in ("case-insensitive", "ignore-case", "-i"):
            task.ignore_case = True
        elif part in ("whole-word", "-w"):
            task.whole_word = True
        elif part in ("fixed-string", "-f"):
            task.fixed_string = True
        elif part in ("filenames-only", "-l"):
            task.filenames_only = True
        elif part in ("count", "-c"):
            task.count_matches = True
        elif part in ("hidden", "all"):
            task.search_hidden = True
        elif part.startswith("in:"):
            if value:
                task.path = value
        elif part in ("names", "filenames", "-n"):
            task.search_names = True
        elif part in ("fuzzy", "fuzzy-match"):
            task.fuzzy_match = True
            task.search_names = True
        elif part in ("combine", "combined"):
            task.combine_results = True
            task.search_names = True

    if task.max_results == 0:
        task.max_results = 100
    if task.search_names and task.max_name_results == 0:
        task.max_name_results = 50
    if not task.path:
        task.path = "."
    return task


# ---------- MEMORY / TODO ----------

MEMORY_OPERATIONS = ("create", "update", "delete", "get", "list")


def parse_quoted_args(text: str) -> List[str]:
    """Split on spaces outside quotes; the quote characters are kept."""
    args: List[str] = []
    current: List[str] = []
    quote = ""
    for ch in text.strip():
        if not quote and ch in ("'", '"'):
            quote = ch
            current.append(ch)
        elif quote and ch == quote:
            current.append(ch)
            quote = ""
        elif not quote and ch == " ":
            if current:
                args.append("".join(current))
                current = []
        else:
            current.append(ch)
    if current:
        args.append("".join(current))
    return args


def _colon_memory(args: str) -> Optional[Task]:
    idx = args.find(":")
    if idx <= 0:
        return None
    id_part = args[:idx].strip()
    quoted = len(id_part) >= 2 and id_part[0] == id_part[-1] and id_part[0] in ("'", '"')
    if not quoted and " " in id_part:
        return None
    content = args[idx + 1 :].strip().lstrip("\r\n").strip()
    return Task(
        type="Memory",
        memory_operation="create",
        memory_id=_unquote(id_part),
        memory_content=content,
    )


def parse_memory_args(args: str) -> Optional[Task]:
    args = args.replace("\\n", "\n")
    task = _colon_memory(args)
    if task is not None:
        return task

    parts = parse_quoted_args(args)
    if not parts:
        return None
    first = parts[0].lower()
    if first in MEMORY_OPERATIONS:
        operation, id_index = first, 1
    else:
        operation, id_index = "create", 0
    task = Task(type="Memory", memory_operation=operation)

    if operation != "list" and len(parts) > id_index:
        task.memory_id = _unquote(parts[id_index])
    options_start = id_index if operation == "list" else id_index + 1

    for part in parts[options_start:]:
        if part.startswith("content:"):
            task.memory_content = _unquote(part[len("content:"):])
        elif part.startswith("description:"):
            task.memory_description = _unquote(part[len("description:"):])
        elif part.startswith("tags:"):
            task.memory_tags = part[len("tags:"):].split(",")
        elif part.startswith("active:"):
            flag = part[len("active:"):].lower()
            if flag in ("true", "false"):
                task.memory_active = flag == "true"

    if not task.memory_content and operation in ("create", "update"):
        words = [p for p in parts[options_start:] if ":" not in p]
        if words:
            task.memory_content = " ".join(words)
    return task


def parse_todo_args(args: str, log: Optional[DebugLog] = None) -> Optional[Task]:
    log = log or DebugLog.disabled()
    parts = parse_quoted_args(args)
    if not parts:
        return None
    operation = parts[0].lower()
    task = Task(type="Todo", todo_operation=operation)

    if operation == "create":
        if not 3 <= len(parts) <= 11:
            log.dbg(f"todo create needs 2-10 titles, got {len(parts) - 1}")
            return None
        titles = [_unquote(p).strip() for p in parts[1:]]
        titles = [t for t in titles if t]
        if len(titles) < 2:
            log.dbg("todo create needs at least 2 non-empty titles")
            return None
        task.todo_titles = titles
    elif operation in ("check", "uncheck"):
        order = _to_int(parts[1]) if len(parts) > 1 else None
        if order is None or order < 1:
            log.dbg(f"todo {operation} needs an item number >= 1")
            return None
        task.todo_item_order = order
    elif operation not in ("show", "clear"):
        log.dbg(f"unknown todo operation: {operation}")
        return None
    return task


# ---------- Payload extraction ----------

_EDIT_LINES_RE = re.compile(r"^EDIT_LINES:\s*(\d+)(?:\s*-\s*(\d+))?\s*$")
_SAFE_BEFORE = "--- BEFORE ---"
_SAFE_CHANGE = "--- CHANGE ---"
_SAFE_AFTER = "--- AFTER ---"
_SAFE_END = "--- END ---"


def parse_safe_edit_block(
    lines: List[str], start: int
) -> Optional[Tuple[List[str], List[str], List[str], int, int]]:
    """(before, new_lines, after, edit_start, edit_end) or None.

    The block must open with ``--- BEFORE ---`` as the first non-blank line
    after the directive.
    """
    i = start
    while i < len(lines) and not lines[i].strip():
        i += 1
    if i >= len(lines) or lines[i].strip() != _SAFE_BEFORE:
        return None

    sections: Dict[str, List[str]] = {"before": [], "change": [], "after": []}
    current = "before"
    edit_start = edit_end = 0
    for line in lines[i + 1 :]:
        stripped = line.strip()
        if stripped == _SAFE_CHANGE and current == "before":
            current = "change"
            continue
        if stripped == _SAFE_AFTER and current == "change":
            current = "after"
            continue
        if current == "after":
            if stripped == _SAFE_END or stripped.startswith("```") or _ANY_DIRECTIVE_RE.match(stripped):
                break
            if not stripped and sections["after"]:
                break
            if not stripped:
                continue
        if current == "change" and not sections["change"] and not edit_start:
            m = _EDIT_LINES_RE.match(stripped)
            if m:
                edit_start = int(m.group(1))
                edit_end = int(m.group(2)) if m.group(2) else edit_start
                continue
        sections[current].append(line)

    if current != "after" or not sections["after"]:
        return None
    change = sections["change"]
    while change and not change[-1].strip():
        change.pop()
    return sections["before"], change, sections["after"], edit_start, edit_end


def extract_code_block(lines: List[str], start: int) -> str:
    """Body of a ``` or \"\"\" block opening within 10 lines of start."""
    for i in range(start, min(len(lines), start + 10)):
        stripped = lines[i].strip()
        for fence in ("```", '"""'):
            if not stripped.startswith(fence):
                continue
            body: List[str] = []
            for line in lines[i + 1 :]:
                if line.strip() == fence:
                    return "\n".join(body)
                body.append(line)
            # unclosed block: take what is there
            return "\n".join(body)
    return ""


def extract_direct_content(lines: List[str], start: int) -> str:
    """Unfenced structured lines following a directive, prose skipped."""
    content: List[str] = []
    found = False
    for line in lines[start:]:
        stripped = line.strip()
        if not content and not stripped:
            continue
        if _ANY_DIRECTIVE_RE.match(stripped):
            break
        if stripped.startswith(("```", '"""', "#", "---")):
            break
        structured = is_structured_content_line(stripped)
        if not found and not structured:
            if is_descriptive_text(stripped):
                continue
        if structured or found:
            found = True
            content.append(line)
    while content and not content[-1].strip():
        content.pop()
    if not content:
        return ""
    full = "\n".join(content)
    return extract_content_from_json(full) or full


_MEMORY_STOP_PHRASES = ("this will", "this helps", "let me", "i'll", "remember key details")


def extract_memory_content(lines: List[str], start: int) -> str:
    """First substantive line within 5 lines after a MEMORY directive."""
    for line in lines[start : start + 5]:
        stripped = line.strip()
        if _ANY_DIRECTIVE_RE.match(stripped):
            break
        if stripped.startswith(("#", "---")):
            break
        low = stripped.lower()
        if any(p in low for p in _MEMORY_STOP_PHRASES):
            break
        if stripped:
            return stripped
    return ""


# ---------- Directive scan ----------

_VERB_PARSERS: Dict[str, Callable[[str], Optional[Task]]] = {
    "READ": parse_read_args,
    "EDIT": parse_edit_args,
    "LIST": parse_list_args,
    "RUN": parse_run_args,
    "SEARCH": parse_search_args,
    "MEMORY": parse_memory_args,
    "TODO": parse_todo_args,
}


def dedup_key(task: Task) -> str:
    """type:path; pathless tasks use their identifying field in place of the path."""
    if task.type == "RunShell":
        target = task.command
    elif task.type == "Search":
        target = f"{task.query}@{task.path}"
    elif task.type == "Memory":
        target = f"{task.memory_operation}:{task.memory_id}"
    elif task.type == "Todo":
        target = task.todo_operation
    else:
        target = task.path
    return f"{task.type}:{target}"


def _fill_edit_payload(task: Task, lines: List[str], start: int) -> None:
    block = parse_safe_edit_block(lines, start)
    if block is not None:
        before, new_lines, after, edit_start, edit_end = block
        task.before_context = before
        task.after_context = after
        task.content = "\n".join(new_lines)
        # the block alone decides what changes
        task.insert_mode = task.start_context = task.end_context = ""
        if edit_start:
            task.target_line = 0
            task.target_start_line = edit_start
            task.target_end_line = edit_end
        return
    if task.content:
        return
    task.content = extract_code_block(lines, start) or extract_direct_content(lines, start)


def parse_directives(text: str, log: Optional[DebugLog] = None) -> List[Task]:
    log = log or DebugLog.disabled()
    processed = (text or "").replace("\\n", "\n").replace('\\"', '"')
    lines = processed.split("\n")
    tasks: List[Task] = []
    seen = set()

    for i, raw in enumerate(lines):
        line = raw.strip()
        m = _EMOJI_DIRECTIVE_RE.match(line)
        if m:
            verb, args = m.group(1).upper(), m.group(2).strip()
        else:
            m = _SIMPLE_DIRECTIVE_RE.match(line)
            if not m:
                continue
            verb, args = m.group(1).upper(), m.group(2).strip()
            if is_conversational_text(line, verb, args):
                log.dbg(f"nl: skipping conversational line {line[:60]!r}")
                continue

        task = _VERB_PARSERS[verb](args)
        if task is None:
            continue
        if task.type == "EditFile":
            _fill_edit_payload(task, lines, i + 1)
        elif task.type == "Memory" and not task.memory_content:
            task.memory_content = extract_memory_content(lines, i + 1)

        key = dedup_key(task)
        if key in seen:
            log.dbg(f"nl: duplicate {key} dropped")
            continue
        seen.add(key)
        tasks.append(task)
        log.dbg(f"nl: parsed {task.type} path={task.path!r}")
    return tasks
