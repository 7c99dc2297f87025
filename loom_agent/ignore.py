"""Skip rules for directory listings: built-in noise lists plus the root .gitignore."""

import fnmatch
from pathlib import Path
from typing import List, Optional, Tuple

SKIP_DIRS = {
    ".git", "node_modules", "vendor", ".vscode", ".idea", "target", "dist",
    "__pycache__", ".next", ".nuxt", "build", "out",
}
SKIP_FILE_PATTERNS = (".DS_Store", "Thumbs.db", "*.tmp", "*.log", "*.swp", "*.swo")


class IgnoreMatcher:
    def should_skip(self, rel_path: str, is_dir: bool) -> bool:
        raise NotImplementedError


class DefaultIgnoreMatcher(IgnoreMatcher):
    def __init__(self, root: Path, extra_patterns: Optional[List[str]] = None):
        self.root = Path(root)
        # (pattern, dir_only, anchored)
        self.patterns: List[Tuple[str, bool, bool]] = []
        for raw in self._load_gitignore() + list(extra_patterns or []):
            self._add(raw)

    def _load_gitignore(self) -> List[str]:
        gi = self.root / ".gitignore"
        if not gi.is_file():
            return []
        try:
            return gi.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError:
            return []

    def _add(self, raw: str) -> None:
        line = raw.strip()
        # negations are not supported
        if not line or line.startswith(("#", "!")):
            return
        dir_only = line.endswith("/")
        line = line.rstrip("/")
        anchored = line.startswith("/") or "/" in line
        self.patterns.append((line.lstrip("/"), dir_only, anchored))

    def should_skip(self, rel_path: str, is_dir: bool) -> bool:
        rel = rel_path.replace("\\", "/").strip("/")
        name = rel.rsplit("/", 1)[-1]
        if is_dir and name in SKIP_DIRS:
            return True
        if not is_dir and any(fnmatch.fnmatch(name, p) for p in SKIP_FILE_PATTERNS):
            return True
        for pattern, dir_only, anchored in self.patterns:
            if dir_only and not is_dir:
                continue
            target = rel if anchored else name
            if fnmatch.fnmatch(target, pattern):
                return True
        return False
