import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional


def _env_bool(env: Mapping[str, str], name: str, default: str = "") -> bool:
    return (env.get(name, default) or "").lower() in ("1", "true", "yes")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# Directory listing limits
MAX_LIST_FILES = 1000
MAX_LIST_DEPTH = 10
MAX_LIST_OUTPUT = 100000  # characters (~25k tokens)

# ReadFile window when the task names none
DEFAULT_MAX_LINES = 200
# 500 KB; larger files are refused by ReadFile
DEFAULT_MAX_FILE_SIZE = 500 * 1024

# RUN directives without "(timeout: Ns)" get this many seconds
DEFAULT_DIRECTIVE_TIMEOUT = 30
# JSON RunShell tasks with no timeout get this many seconds at validation
DEFAULT_VALIDATED_TIMEOUT = 3
DEFAULT_PATCH_TIMEOUT = 30
DEFAULT_SEARCH_TIMEOUT = 10


@dataclass
class Config:
    """Runtime knobs for one engine instance.

    Built once (usually via ``Config.from_env``) and handed to every component;
    nothing reads the environment after construction.
    """

    workspace: Path = field(default_factory=lambda: Path(os.getcwd()).resolve())
    enable_shell: bool = False
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    read_max_lines: int = DEFAULT_MAX_LINES
    list_max_files: int = MAX_LIST_FILES
    list_max_depth: int = MAX_LIST_DEPTH
    list_max_output: int = MAX_LIST_OUTPUT
    shell_timeout: int = DEFAULT_DIRECTIVE_TIMEOUT
    patch_timeout: int = DEFAULT_PATCH_TIMEOUT
    search_timeout: int = DEFAULT_SEARCH_TIMEOUT
    debug: bool = False
    debug_log_path: str = ""
    # Prepare edits without writing them (see models.DryRunPolicy)
    dry_run: bool = False

    def __post_init__(self) -> None:
        self.workspace = Path(self.workspace).expanduser().resolve()

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        **overrides,
    ) -> "Config":
        env = os.environ if environ is None else environ
        values = dict(
            workspace=env.get("LOOM_WORKSPACE") or os.getcwd(),
            enable_shell=_env_bool(env, "LOOM_ENABLE_SHELL"),
            max_file_size=_env_int(env, "LOOM_MAX_FILE_SIZE", DEFAULT_MAX_FILE_SIZE),
            read_max_lines=_env_int(env, "LOOM_READ_MAX_LINES", DEFAULT_MAX_LINES),
            list_max_files=_env_int(env, "LOOM_LIST_MAX_FILES", MAX_LIST_FILES),
            list_max_depth=_env_int(env, "LOOM_LIST_MAX_DEPTH", MAX_LIST_DEPTH),
            list_max_output=_env_int(env, "LOOM_LIST_MAX_OUTPUT", MAX_LIST_OUTPUT),
            shell_timeout=_env_int(env, "LOOM_SHELL_TIMEOUT", DEFAULT_DIRECTIVE_TIMEOUT),
            patch_timeout=_env_int(env, "LOOM_PATCH_TIMEOUT", DEFAULT_PATCH_TIMEOUT),
            search_timeout=_env_int(env, "LOOM_SEARCH_TIMEOUT", DEFAULT_SEARCH_TIMEOUT),
            # LOOM_DEBUG=1: timestamped debug lines on stderr (and the log file if set)
            debug=_env_bool(env, "LOOM_DEBUG"),
            debug_log_path=env.get("LOOM_DEBUG_LOG", ""),
            dry_run=_env_bool(env, "LOOM_DRY_RUN"),
        )
        values.update(overrides)
        return cls(**values)
