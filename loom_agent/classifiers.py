"""Text heuristics used while pulling directives and payloads out of model prose.

All functions are pure; thresholds and word lists live at module level.
"""

import json
from typing import List, Optional

# ---------- Conversational text ----------

_CONVERSATIONAL_WORDS = (
    "saved!", "created!", "completed!", "successfully!", "finished!",
    "saved", "created successfully", "completed successfully", "finished successfully",
    "usage of", "performance of", "behavior of", "implementation of",
    "i'll remember", "has been", "will be", "let me", "i can",
)

_MEMORY_CONVERSATIONAL = (
    "saved!", "created", "stored", "remembered", "updated successfully",
    "usage", "allocation", "leak", "consumption", "performance",
)
_MEMORY_CONVERSATIONAL_PREFIXES = ("saved", "created", "updated", "stored")

_EDIT_CONVERSATIONAL = (
    "completed", "finished", "successful", "done", "applied",
    "has been updated", "has been modified", "has been changed",
)

_SENTENCE_PATTERNS = (
    "i'll", "i will", "this is", "this has", "the file", "the memory",
    "has been", "will be", "it is", "it has", "we should", "you can",
)


def is_conversational_text(line: str, verb: str, args: str) -> bool:
    """True when a line shaped like ``VERB args`` is really prose about a task.

    verb is the upper-case directive keyword (READ, EDIT, MEMORY, ...).
    """
    lower_line = line.lower()
    lower_args = args.lower()
    if line.strip().endswith("!"):
        return True
    if any(w in lower_line for w in _CONVERSATIONAL_WORDS):
        return True
    if verb == "MEMORY":
        if any(p in lower_args for p in _MEMORY_CONVERSATIONAL):
            return True
        if lower_args.startswith(_MEMORY_CONVERSATIONAL_PREFIXES):
            return True
    if verb == "EDIT":
        if any(p in lower_args for p in _EDIT_CONVERSATIONAL):
            return True
    return any(p in lower_args for p in _SENTENCE_PATTERNS)


# ---------- Payload classification ----------

_CODE_TOKENS = ("function", "const ", "let ", "var ", "def ", "class ", "import ", "export ")


def is_structured_content_line(line: str) -> bool:
    """JSON, YAML, code, markup or key=value shaped line."""
    if not line:
        return False
    if line.startswith(("{", "}", "[", "]")):
        return True
    if '"name":' in line or '"version":' in line or '"dependencies":' in line:
        return True
    # colon-space without a sentence break reads as YAML
    if ": " in line and ". " not in line:
        return True
    if any(tok in line for tok in _CODE_TOKENS):
        return True
    if line.startswith("<") and line.endswith(">"):
        return True
    if "=" in line and " " not in line:
        return True
    return False


def is_descriptive_text(line: str) -> bool:
    """Sentence-like prose the model wrote around a payload."""
    if not line:
        return False
    if line.endswith((".", "!", "?")):
        if "A" <= line[0] <= "Z":
            return True
        if line.startswith(("This will", "This is", "The ", "It will")):
            return True
    for phrase in ("will improve", "will add", "necessary", "configuration"):
        if phrase in line:
            return True
    return False


def _balanced_json_prefix(text: str) -> Optional[str]:
    depth = 0
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if escaped:
            escaped = False
            continue
        if ch == "\\":
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[: i + 1]
    return None


def extract_content_from_json(text: str) -> str:
    """Return the string ``content`` field of a JSON object payload, else ''."""
    trimmed = (text or "").strip()
    if not trimmed.startswith("{"):
        return ""
    candidates: List[str] = []
    prefix = _balanced_json_prefix(trimmed)
    if prefix:
        candidates.append(prefix)
    if trimmed.endswith("}") and trimmed not in candidates:
        candidates.append(trimmed)
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict) and isinstance(data.get("content"), str):
            return data["content"]
    return ""


def is_diff_formatted_content(content: str, ratio: float = 0.5) -> bool:
    """Content whose lines are mostly ``+``/``-`` prefixed (a diff pasted as file text).

    Needs both prefixes present so plain markdown bullet lists are not flagged.
    """
    lines = [ln for ln in (content or "").split("\n") if ln.strip()]
    if not lines:
        return False
    plus = sum(1 for ln in lines if ln.lstrip().startswith("+"))
    minus = sum(1 for ln in lines if ln.lstrip().startswith("-"))
    if plus == 0 or minus == 0:
        return False
    return (plus + minus) / len(lines) > ratio
