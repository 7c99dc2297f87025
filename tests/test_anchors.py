import unittest

from loom_agent.anchors import find_anchor, matches_anchor


class FindAnchorTests(unittest.TestCase):
    def test_exact_line_wins(self):
        lines = ["def a():", "    pass", "def b():"]
        self.assertEqual(find_anchor(lines, "def b():"), (2, "exact"))

    def test_exact_ignores_surrounding_whitespace(self):
        self.assertEqual(find_anchor(["    return x  "], "return x"), (0, "exact"))

    def test_substring_is_case_insensitive(self):
        self.assertEqual(find_anchor(["Hello World"], "world"), (0, "substring"))

    def test_regex_fallback(self):
        self.assertEqual(find_anchor(["foo123"], r"foo\d+"), (0, "regex"))

    def test_invalid_regex_is_just_a_miss(self):
        self.assertEqual(find_anchor(["abc"], "a[b"), (-1, ""))

    def test_search_starts_at_offset(self):
        self.assertEqual(find_anchor(["x", "y", "x"], "x", 1), (2, "exact"))

    def test_empty_anchor(self):
        self.assertEqual(find_anchor(["x"], "   "), (-1, ""))

    def test_matches_anchor(self):
        self.assertTrue(matches_anchor("import os", "import os"))
        self.assertFalse(matches_anchor("import os", "import sys"))


if __name__ == "__main__":
    unittest.main()
