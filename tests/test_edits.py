import tempfile
import unittest
from pathlib import Path

from loom_agent.edits import (
    EditEngine,
    perform_line_edit,
    perform_safe_edit,
    perform_targeted_edit,
    strip_echoed_line_numbers,
    summarize_edit,
)
from loom_agent.errors import EditSafetyError, SecurityError
from loom_agent.files import Workspace
from loom_agent.models import BEGINNING_OF_FILE, Task

FOUR = "line1\nline2\nline3\nline4\n"


def _anchored(mode: str, start: str = "", end: str = "", content: str = "") -> Task:
    return Task(type="EditFile", path="f.txt", insert_mode=mode, start_context=start, end_context=end, content=content)


class SummarizeEditTests(unittest.TestCase):
    def test_counts_modified_and_added(self) -> None:
        s = summarize_edit("a\nb\n", "a\nB\nc\n", "f.txt")
        self.assertEqual((s.lines_added, s.lines_removed, s.lines_modified), (1, 0, 1))
        self.assertEqual(s.edit_type, "modify")
        self.assertEqual(s.compact_summary(), "Modified f.txt (2 changes)")

    def test_identical_content(self) -> None:
        s = summarize_edit("a\n", "a\n", "f.txt")
        self.assertTrue(s.is_identical_content)
        self.assertIn("already contains the desired content", s.compact_summary())

    def test_new_file(self) -> None:
        s = summarize_edit("", "a\nb\n", "f.txt", existed=False)
        self.assertEqual(s.compact_summary(), "Created f.txt (2 lines)")

    def test_strip_echoed_line_numbers(self) -> None:
        self.assertEqual(strip_echoed_line_numbers(["   3: foo", "   4: bar"]), ["foo", "bar"])
        self.assertEqual(strip_echoed_line_numbers(["3: a", "plain"]), ["3: a", "plain"])


class TargetedEditTests(unittest.TestCase):
    def test_insert_after_leaves_other_lines_alone(self) -> None:
        out = perform_targeted_edit("f.txt", FOUR, _anchored("insert_after", "line2", content="NEW"))
        self.assertEqual(out, "line1\nline2\nNEW\nline3\nline4\n")
        self.assertEqual([ln for ln in out.split("\n") if ln != "NEW"], FOUR.split("\n"))

    def test_insert_before(self) -> None:
        out = perform_targeted_edit("f.txt", FOUR, _anchored("insert_before", "line3", content="NEW"))
        self.assertEqual(out, "line1\nline2\nNEW\nline3\nline4\n")

    def test_insert_at_beginning_of_file(self) -> None:
        out = perform_targeted_edit("f.txt", "a\n", _anchored("insert_before", BEGINNING_OF_FILE, content="# hdr"))
        self.assertEqual(out, "# hdr\na\n")

    def test_append(self) -> None:
        self.assertEqual(perform_targeted_edit("f.txt", "a\n", _anchored("append", content="b")), "a\nb\n")
        self.assertEqual(perform_targeted_edit("f.txt", "a", _anchored("append", content="b")), "a\nb")

    def test_replace_block_between_anchors(self) -> None:
        original = "def f():\n    return 1\n\nx = 2\n"
        task = _anchored("replace", "def f():", "return 1", "def f():\n    return 2")
        self.assertEqual(perform_targeted_edit("f.py", original, task), "def f():\n    return 2\n\nx = 2\n")

    def test_replace_all(self) -> None:
        out = perform_targeted_edit("f.txt", "foo bar foo", _anchored("replace_all", "foo", "baz"))
        self.assertEqual(out, "baz bar baz")

    def test_replace_all_is_case_sensitive(self) -> None:
        with self.assertRaises(EditSafetyError) as ctx:
            perform_targeted_edit("f.txt", "foo bar", _anchored("replace_all", "FOO", "baz"))
        self.assertIn("different case", str(ctx.exception))

    def test_insert_between(self) -> None:
        out = perform_targeted_edit("f.txt", "a\nold\nc\n", _anchored("insert_between", "a", "c", "X"))
        self.assertEqual(out, "a\nX\nc\n")

    def test_missing_anchor_has_context(self) -> None:
        with self.assertRaises(EditSafetyError) as ctx:
            perform_targeted_edit("f.txt", FOUR, _anchored("insert_after", "nowhere", content="x"))
        self.assertEqual(ctx.exception.contextual_error.type, "anchor_not_found")


class SafeEditTests(unittest.TestCase):
    def _task(self, before, after, content, target_line=0) -> Task:
        return Task(
            type="EditFile",
            path="f.txt",
            before_context=before,
            after_context=after,
            content=content,
            target_line=target_line,
        )

    def test_with_target_line(self) -> None:
        out = perform_safe_edit("f.txt", FOUR, self._task(["line1"], ["line3"], "LINE2", target_line=2))
        self.assertEqual(out, "line1\nLINE2\nline3\nline4\n")

    def test_contexts_on_the_target_line_are_rejected(self) -> None:
        with self.assertRaises(EditSafetyError):
            perform_safe_edit("f.txt", FOUR, self._task(["line2"], ["line3"], "X", target_line=2))
        with self.assertRaises(EditSafetyError):
            perform_safe_edit("f.txt", FOUR, self._task(["line1"], ["line2"], "X", target_line=2))

    def test_before_context_at_start_of_file_is_rejected(self) -> None:
        with self.assertRaises(EditSafetyError):
            perform_safe_edit("f.txt", FOUR, self._task(["line1"], ["line2"], "X", target_line=1))

    def test_without_target_lines(self) -> None:
        out = perform_safe_edit("f.txt", FOUR, self._task(["line1"], ["line3"], "LINE2"))
        self.assertEqual(out, "line1\nLINE2\nline3\nline4\n")

    def test_echoed_line_numbers_are_tolerated(self) -> None:
        out = perform_safe_edit("f.txt", FOUR, self._task(["   1: line1"], ["   3: line3"], "LINE2"))
        self.assertEqual(out, "line1\nLINE2\nline3\nline4\n")

    def test_mismatch(self) -> None:
        with self.assertRaises(EditSafetyError) as ctx:
            perform_safe_edit("f.txt", FOUR, self._task(["nope"], ["line3"], "X", target_line=2))
        self.assertEqual(ctx.exception.contextual_error.type, "context_mismatch")

    def test_ambiguous_region(self) -> None:
        with self.assertRaises(EditSafetyError) as ctx:
            perform_safe_edit("f.txt", "x\ny\nx\ny\n", self._task(["x"], ["y"], "z"))
        self.assertIn("2 locations", str(ctx.exception))


class LineEditTests(unittest.TestCase):
    def test_replace_line(self) -> None:
        task = Task(type="EditFile", path="f.txt", target_line=2, content="B")
        self.assertEqual(perform_line_edit("f.txt", "a\nb\nc\n", True, task), "a\nB\nc\n")

    def test_insert_after_by_intent(self) -> None:
        task = Task(type="EditFile", path="f.txt", target_line=2, content="B", intent="insert after line 2")
        self.assertEqual(perform_line_edit("f.txt", "a\nb\nc\n", True, task), "a\nb\nB\nc\n")

    def test_out_of_range(self) -> None:
        task = Task(type="EditFile", path="f.txt", target_line=9, content="B")
        with self.assertRaises(EditSafetyError):
            perform_line_edit("f.txt", "a\nb\n", True, task)

    def test_context_validation(self) -> None:
        task = Task(type="EditFile", path="f.txt", target_line=1, content="B", context_validation="zzz")
        with self.assertRaises(EditSafetyError):
            perform_line_edit("f.txt", "a\nb\n", True, task)


class EditEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.engine = EditEngine(Workspace(self.root))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _write(self, name: str, text: str) -> Path:
        p = self.root / name
        p.write_text(text, encoding="utf-8")
        return p

    def test_full_replacement_truncation_is_refused(self) -> None:
        original = "".join(f"line {i}\n" for i in range(20))
        p = self._write("notes.txt", original)
        task = Task(type="EditFile", path="notes.txt", content="line 0\n" * 9)
        with self.assertRaises(EditSafetyError) as ctx:
            self.engine.prepare(task)
        self.assertEqual(ctx.exception.contextual_error.type, "truncation")
        self.assertEqual(p.read_text(encoding="utf-8"), original)

    def test_diff_formatted_content_is_refused(self) -> None:
        self._write("a.txt", "x\n")
        with self.assertRaises(EditSafetyError):
            self.engine.prepare(Task(type="EditFile", path="a.txt", content="+new\n-old\n"))

    def test_identical_content_is_a_noop(self) -> None:
        self._write("a.txt", "x\n")
        prepared = self.engine.prepare(Task(type="EditFile", path="a.txt", content="x\n"))
        self.assertTrue(prepared.is_identical)
        self.assertEqual(prepared.diff_preview, "")
        self.engine.apply(prepared)
        self.assertEqual((self.root / "a.txt").read_text(encoding="utf-8"), "x\n")

    def test_reapplying_an_edit_is_idempotent(self) -> None:
        self._write("a.txt", "a\nb\n")
        task = Task(type="EditFile", path="a.txt", insert_mode="replace_all", start_context="b", end_context="B")
        self.engine.apply(self.engine.prepare(task))
        again = self.engine.prepare(Task(type="EditFile", path="a.txt", content="a\nB\n"))
        self.assertTrue(again.is_identical)

    def test_creates_new_file(self) -> None:
        prepared = self.engine.prepare(Task(type="EditFile", path="pkg/new.py", content="x = 1\n"))
        self.assertFalse(prepared.exists)
        self.engine.apply(prepared)
        self.assertEqual((self.root / "pkg" / "new.py").read_text(encoding="utf-8"), "x = 1\n")

    def test_unified_diff(self) -> None:
        self._write("f.txt", "a\nb\nc\n")
        diff = "--- a/f.txt\n+++ b/f.txt\n@@ -1,3 +1,3 @@\n a\n-b\n+B\n c\n"
        prepared = self.engine.prepare(Task(type="EditFile", path="f.txt", diff=diff))
        self.assertEqual(prepared.strategy, "unified_diff")
        self.engine.apply(prepared)
        self.assertEqual((self.root / "f.txt").read_text(encoding="utf-8"), "a\nB\nc\n")

    def test_unified_diff_mismatch(self) -> None:
        self._write("f.txt", "a\nq\nc\n")
        diff = "--- a/f.txt\n+++ b/f.txt\n@@ -1,3 +1,3 @@\n a\n-b\n+B\n c\n"
        with self.assertRaises(EditSafetyError) as ctx:
            self.engine.prepare(Task(type="EditFile", path="f.txt", diff=diff))
        self.assertEqual(ctx.exception.contextual_error.type, "hunk_not_found")

    def test_file_changed_after_prepare(self) -> None:
        p = self._write("a.txt", "a\nb\n")
        prepared = self.engine.prepare(
            Task(type="EditFile", path="a.txt", insert_mode="append", content="c")
        )
        p.write_text("someone else\n", encoding="utf-8")
        with self.assertRaises(EditSafetyError):
            self.engine.apply(prepared)
        self.assertEqual(p.read_text(encoding="utf-8"), "someone else\n")

    def test_binary_file_is_refused(self) -> None:
        (self.root / "blob.bin").write_bytes(b"\x00\x01\x02")
        with self.assertRaises(EditSafetyError):
            self.engine.prepare(Task(type="EditFile", path="blob.bin", content="x"))

    def test_escape_is_refused(self) -> None:
        with self.assertRaises(SecurityError):
            self.engine.prepare(Task(type="EditFile", path="../outside.txt", content="x"))

    def test_safe_edit_over_a_context_line_leaves_file_unchanged(self) -> None:
        p = self._write("a.txt", "a\nb\nc\nd\n")
        task = Task(
            type="EditFile", path="a.txt", before_context=["b"], after_context=["c"], target_line=2, content="X"
        )
        with self.assertRaises(EditSafetyError):
            self.engine.prepare(task)
        self.assertEqual(p.read_text(encoding="utf-8"), "a\nb\nc\nd\n")

    def test_non_utf8_file_is_refused(self) -> None:
        (self.root / "latin.txt").write_bytes("caf\u00e9\n".encode("latin-1"))
        with self.assertRaises(EditSafetyError) as ctx:
            self.engine.prepare(Task(type="EditFile", path="latin.txt", insert_mode="append", content="x"))
        self.assertIn("non-UTF-8", str(ctx.exception))

    def test_crlf_line_endings_are_kept(self) -> None:
        p = self.root / "win.txt"
        p.write_bytes(b"one\r\ntwo\r\nthree\r\n")
        task = Task(type="EditFile", path="win.txt", insert_mode="insert_after", start_context="two", content="NEW")
        prepared = self.engine.prepare(task)
        self.assertEqual(prepared.summary.lines_added, 1)
        self.engine.apply(prepared)
        self.assertEqual(p.read_bytes(), b"one\r\ntwo\r\nNEW\r\nthree\r\n")

    def test_crlf_full_replacement_with_same_text_is_a_noop(self) -> None:
        (self.root / "win.txt").write_bytes(b"a\r\nb\r\n")
        prepared = self.engine.prepare(Task(type="EditFile", path="win.txt", content="a\nb\n"))
        self.assertTrue(prepared.is_identical)

    def test_mixed_line_endings_are_left_alone(self) -> None:
        p = self.root / "mixed.txt"
        p.write_bytes(b"a\r\nb\nc\n")
        task = Task(type="EditFile", path="mixed.txt", insert_mode="insert_after", start_context="b", content="X")
        self.engine.apply(self.engine.prepare(task))
        self.assertEqual(p.read_bytes(), b"a\r\nb\nX\nc\n")


if __name__ == "__main__":
    unittest.main()
