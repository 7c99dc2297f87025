import shutil
import tempfile
import unittest
from pathlib import Path

from loom_agent.ignore import DefaultIgnoreMatcher
from loom_agent.models import Task
from loom_agent.search import GrepResult, RipgrepSearch, build_rg_args, format_search_results


class BuildRgArgsTests(unittest.TestCase):
    def test_flags_in_order(self) -> None:
        task = Task(
            type="Search",
            query="foo",
            ignore_case=True,
            file_types=["go"],
            exclude_globs=["*.pb.go"],
            max_results=10,
        )
        self.assertEqual(
            build_rg_args(task, "src"),
            [
                "rg", "--no-heading", "--color=never", "--max-columns", "300", "--max-columns-preview",
                "--line-number", "-i", "-t", "go", "-g", "!*.pb.go", "-m", "10", "--", "foo", "src",
            ],
        )

    def test_filenames_only_drops_line_numbers(self) -> None:
        args = build_rg_args(Task(type="Search", query="foo", filenames_only=True), ".")
        self.assertIn("-l", args)
        self.assertNotIn("--line-number", args)


class FormatSearchResultsTests(unittest.TestCase):
    def test_header_and_tip(self) -> None:
        task = Task(type="Search", query="x", path=".")
        result = GrepResult(query="x", lines=["a.py:1:x"], match_count=60, file_count=3)
        text = format_search_results(result, task)
        self.assertTrue(text.startswith("🔍 Search Results for: 'x'"))
        self.assertIn("📊 Summary: 60 matches in 3 files", text)
        self.assertIn("💡 Tip:", text)


class IgnoreMatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        (root / ".gitignore").write_text(
            "# generated\ncache/\n/docs/*.md\nsecret.txt\n!keep.txt\n", encoding="utf-8"
        )
        self.matcher = DefaultIgnoreMatcher(root)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_builtin_lists(self) -> None:
        self.assertTrue(self.matcher.should_skip("node_modules", True))
        self.assertTrue(self.matcher.should_skip("logs/app.log", False))

    def test_directory_only_pattern(self) -> None:
        self.assertTrue(self.matcher.should_skip("cache", True))
        self.assertFalse(self.matcher.should_skip("cache", False))

    def test_anchored_pattern(self) -> None:
        self.assertTrue(self.matcher.should_skip("docs/a.md", False))
        self.assertFalse(self.matcher.should_skip("other/docs/a.md", False))

    def test_basename_pattern(self) -> None:
        self.assertTrue(self.matcher.should_skip("x/secret.txt", False))
        self.assertFalse(self.matcher.should_skip("keep.txt", False))


@unittest.skipUnless(shutil.which("rg"), "ripgrep not installed")
class RipgrepSearchTests(unittest.TestCase):
    def test_finds_matches(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp).resolve()
            (root / "a.py").write_text("alpha = 1\nbeta = 2\n", encoding="utf-8")
            task = Task(type="Search", query="beta", path=".", max_results=100)
            result = RipgrepSearch(timeout=10).search(task, root, root)
            self.assertEqual(result.match_count, 1)
            self.assertEqual(result.file_count, 1)
            self.assertEqual(result.matches[0].line, 2)

    def test_no_matches_is_empty(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp).resolve()
            (root / "a.py").write_text("alpha\n", encoding="utf-8")
            task = Task(type="Search", query="zzz", path=".", max_results=100)
            self.assertTrue(RipgrepSearch(timeout=10).search(task, root, root).empty)


if __name__ == "__main__":
    unittest.main()
