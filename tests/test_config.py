import io
import os
import tempfile
import unittest
from pathlib import Path

from loom_agent.config import DEFAULT_DIRECTIVE_TIMEOUT, Config
from loom_agent.utils import DebugLog, tool_call_repr


class ConfigFromEnvTests(unittest.TestCase):
    def test_reads_loom_variables(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            cfg = Config.from_env(
                {
                    "LOOM_WORKSPACE": tmp,
                    "LOOM_ENABLE_SHELL": "true",
                    "LOOM_READ_MAX_LINES": "50",
                    "LOOM_DRY_RUN": "1",
                }
            )
            self.assertEqual(cfg.workspace, Path(tmp).resolve())
            self.assertTrue(cfg.enable_shell)
            self.assertTrue(cfg.dry_run)
            self.assertEqual(cfg.read_max_lines, 50)

    def test_bad_integer_falls_back_to_default(self) -> None:
        cfg = Config.from_env({"LOOM_SHELL_TIMEOUT": "soon"})
        self.assertEqual(cfg.shell_timeout, DEFAULT_DIRECTIVE_TIMEOUT)

    def test_defaults_are_conservative(self) -> None:
        cfg = Config.from_env({})
        self.assertFalse(cfg.enable_shell)
        self.assertFalse(cfg.debug)
        self.assertFalse(cfg.dry_run)
        self.assertEqual(cfg.workspace, Path(os.getcwd()).resolve())

    def test_overrides_win_over_environment(self) -> None:
        cfg = Config.from_env({"LOOM_ENABLE_SHELL": "1"}, enable_shell=False)
        self.assertFalse(cfg.enable_shell)


class DebugLogTests(unittest.TestCase):
    def test_disabled_log_prints_nothing(self):
        stream = io.StringIO()
        log = DebugLog(enabled=False, stream=stream)
        log.dbg("hidden")
        log.dbg_dump("label", "body")
        self.assertEqual(stream.getvalue(), "")

    def test_enabled_log_writes_tagged_lines(self):
        stream = io.StringIO()
        DebugLog(enabled=True, stream=stream).dbg("visible")
        self.assertIn("[debug]", stream.getvalue())
        self.assertIn("visible", stream.getvalue())

    def test_tool_lines_always_reach_the_log_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "loom.log")
            log = DebugLog(enabled=False, log_path=path)
            log.tool("ReadFile(path='a.py')")
            log.dbg("not written")
            with open(path, encoding="utf-8") as f:
                text = f.read()
        self.assertIn("[tool]", text)
        self.assertIn("ReadFile(path='a.py')", text)
        self.assertNotIn("not written", text)

    def test_tool_call_repr_sorts_and_clips(self):
        self.assertEqual(
            tool_call_repr("ReadFile", {"path": "a.py", "max_lines": 5}),
            "ReadFile(max_lines=5, path='a.py')",
        )
        long = tool_call_repr("RunShell", {"command": "x" * 300}, max_len=10)
        self.assertTrue(long.endswith("...)"))


if __name__ == "__main__":
    unittest.main()
