import os
import sys
import time
from typing import Optional, TextIO

from .config import Config


class DebugLog:
    """Debug/tool logger handed to each component.

    Debug lines go to stderr and the log file only when ``enabled``; tool lines
    are always appended to the log file (when one is configured) so every
    executed task stays traceable.
    """

    def __init__(
        self,
        enabled: bool = False,
        log_path: str = "",
        stream: Optional[TextIO] = None,
        dump_max_lines: int = 20,
        dump_max_chars: int = 2000,
    ):
        self.enabled = enabled
        self.log_path = log_path
        self.stream = stream
        self.dump_max_lines = dump_max_lines
        self.dump_max_chars = dump_max_chars

    @classmethod
    def from_config(cls, config: Config) -> "DebugLog":
        return cls(enabled=config.debug, log_path=config.debug_log_path)

    @classmethod
    def disabled(cls) -> "DebugLog":
        return cls(enabled=False, log_path="")

    def _line(self, tag: str, message: str) -> str:
        ts = time.strftime("%Y-%m-%d %H:%M:%S")
        return f"[{tag}] [{ts} pid={os.getpid()}] {message}"

    def _append(self, line: str) -> None:
        if not self.log_path:
            return
        try:
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError:
            pass

    def dbg(self, message: str) -> None:
        if not self.enabled:
            return
        line = self._line("debug", message)
        print(line, file=self.stream or sys.stderr)
        self._append(line)

    def dbg_dump(self, label: str, text: str) -> None:
        """Dump a block of text (model output, patch body) truncated to the dump limits."""
        if not self.enabled:
            return
        content = text or ""
        lines = [ln for ln in content.splitlines() if ln.strip()]
        preview = "\n".join(lines[: self.dump_max_lines])
        if len(preview) > self.dump_max_chars:
            preview = preview[: self.dump_max_chars]
        truncated = len(lines) > self.dump_max_lines or len(content) > self.dump_max_chars
        header = f"[debug_dump] {label} (len={len(content)}){' …(truncated)' if truncated else ''}"
        print(header, file=self.stream or sys.stderr)
        print(preview, file=self.stream or sys.stderr)
        self._append(header + "\n" + preview)

    def tool(self, message: str) -> None:
        line = self._line("tool", message)
        if self.enabled:
            print(line, file=self.stream or sys.stderr)
        self._append(line)


def tool_call_repr(tool: str, args: dict, max_len: int = 200) -> str:
    """Render a tool call as ``tool(k=v, ...)`` with long values clipped."""
    def _arg_repr(v):
        s = repr(v)
        return (s[:max_len] + "...") if len(s) > max_len else s
    parts = [f"{k}={_arg_repr(v)}" for k, v in sorted((args or {}).items())]
    return f"{tool}({', '.join(parts)})"
