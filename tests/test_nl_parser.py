import unittest

from loom_agent.config import DEFAULT_DIRECTIVE_TIMEOUT, DEFAULT_MAX_LINES
from loom_agent.models import BEGINNING_OF_FILE, Task
from loom_agent.nl_parser import (
    dedup_key,
    extract_code_block,
    extract_memory_content,
    parse_directives,
    parse_edit_args,
    parse_memory_args,
    parse_quoted_args,
    parse_read_args,
    parse_search_args,
    parse_todo_args,
)


class ReadArgsTests(unittest.TestCase):
    def test_line_range(self):
        task = parse_read_args("main.py (lines 10-20)")
        self.assertEqual((task.path, task.start_line, task.end_line, task.max_lines), ("main.py", 10, 20, 0))

    def test_default_window(self):
        self.assertEqual(parse_read_args("main.py").max_lines, DEFAULT_MAX_LINES)

    def test_max_and_first(self):
        self.assertEqual(parse_read_args("a.go (max: 40)").max_lines, 40)
        self.assertEqual(parse_read_args("a.go (first 15 lines)").max_lines, 15)

    def test_line_numbers_suffix(self):
        task = parse_read_args("notes.txt with line numbers")
        self.assertEqual(task.path, "notes.txt")
        self.assertTrue(task.show_line_numbers)


class EditArgsTests(unittest.TestCase):
    def test_path_with_line(self):
        task = parse_edit_args("app.py:12")
        self.assertEqual((task.path, task.target_line), ("app.py", 12))

    def test_path_with_range(self):
        task = parse_edit_args("app.py:3-7 → tidy up")
        self.assertEqual((task.target_start_line, task.target_end_line), (3, 7))
        self.assertEqual(task.intent, "tidy up")

    def test_insert_after_phrase(self):
        task = parse_edit_args('app.py → add logging after "import os"')
        self.assertEqual((task.insert_mode, task.start_context), ("insert_after", "import os"))

    def test_search_replace_phrase(self):
        task = parse_edit_args("app.py -> replace all 'oldName' with 'newName'")
        self.assertEqual(task.insert_mode, "replace_all")
        self.assertEqual((task.start_context, task.end_context, task.content), ("oldName", "newName", "newName"))

    def test_prepend_phrase(self):
        task = parse_edit_args("app.py → add a license header at the top")
        self.assertEqual((task.insert_mode, task.start_context), ("insert_before", BEGINNING_OF_FILE))

    def test_append_phrase(self):
        self.assertEqual(parse_edit_args("app.py → append a main guard").insert_mode, "append")


class SearchArgsTests(unittest.TestCase):
    def test_options(self) -> None:
        task = parse_search_args('"handleRequest" type:go in:Internal/API -i glob:*.Test.go max:5')
        self.assertEqual(task.query, "handleRequest")
        self.assertEqual(task.file_types, ["go"])
        self.assertEqual(task.path, "Internal/API")
        self.assertTrue(task.ignore_case)
        self.assertEqual(task.glob_patterns, ["*.Test.go"])
        self.assertEqual(task.max_results, 5)

    def test_defaults(self) -> None:
        task = parse_search_args("TODO fuzzy")
        self.assertEqual((task.path, task.max_results), (".", 100))
        self.assertTrue(task.search_names)
        self.assertEqual(task.max_name_results, 50)


class MemoryAndTodoArgsTests(unittest.TestCase):
    def test_quoted_args_keep_quotes(self) -> None:
        self.assertEqual(parse_quoted_args('create "a b" c'), ["create", '"a b"', "c"])

    def test_colon_form(self) -> None:
        task = parse_memory_args('"db-notes": Postgres runs on port 5433')
        self.assertEqual((task.memory_operation, task.memory_id), ("create", "db-notes"))
        self.assertEqual(task.memory_content, "Postgres runs on port 5433")

    def test_keyed_options(self) -> None:
        task = parse_memory_args("update style tags:go,lint active:false")
        self.assertEqual(task.memory_operation, "update")
        self.assertEqual(task.memory_id, "style")
        self.assertEqual(task.memory_tags, ["go", "lint"])
        self.assertIs(task.memory_active, False)

    def test_todo_create(self) -> None:
        task = parse_todo_args('create "Write tests" "Ship it"')
        self.assertEqual(task.todo_titles, ["Write tests", "Ship it"])

    def test_todo_rejects_single_title_and_bad_order(self) -> None:
        self.assertIsNone(parse_todo_args('create "Only one"'))
        self.assertIsNone(parse_todo_args("check zero"))
        self.assertEqual(parse_todo_args("check 2").todo_item_order, 2)


class PayloadTests(unittest.TestCase):
    def test_code_block(self) -> None:
        lines = ["some prose", "```python", "x = 1", "y = 2", "```"]
        self.assertEqual(extract_code_block(lines, 0), "x = 1\ny = 2")

    def test_memory_content_stops_at_prose(self) -> None:
        self.assertEqual(extract_memory_content(["", "make release"], 0), "make release")
        self.assertEqual(extract_memory_content(["Let me know"], 0), "")


class ParseDirectivesTests(unittest.TestCase):
    def test_emoji_and_simple_forms(self) -> None:
        tasks = parse_directives("🔧 READ main.py\nlist src recursive")
        self.assertEqual([t.type for t in tasks], ["ReadFile", "ListDir"])
        self.assertTrue(tasks[1].recursive)
        self.assertEqual(tasks[1].path, "src")

    def test_conversational_lines_are_ignored(self) -> None:
        self.assertEqual(parse_directives("Read the file has been updated"), [])

    def test_run_with_timeout(self) -> None:
        tasks = parse_directives("🔧 RUN go test ./... (timeout: 60s)\n🔧 RUN ls")
        self.assertEqual((tasks[0].command, tasks[0].timeout), ("go test ./...", 60))
        self.assertEqual(tasks[1].timeout, DEFAULT_DIRECTIVE_TIMEOUT)

    def test_edit_takes_following_code_block(self) -> None:
        text = '🔧 EDIT app.py → add logging after "import os"\n```python\nimport logging\n```'
        (task,) = parse_directives(text)
        self.assertEqual(task.insert_mode, "insert_after")
        self.assertEqual(task.content, "import logging")

    def test_safe_edit_block(self) -> None:
        text = "\n".join(
            [
                "🔧 EDIT app.py",
                "--- BEFORE ---",
                "def f():",
                "--- CHANGE ---",
                "EDIT_LINES: 2",
                "    return 2",
                "--- AFTER ---",
                "print(f())",
            ]
        )
        (task,) = parse_directives(text)
        self.assertEqual(task.before_context, ["def f():"])
        self.assertEqual(task.after_context, ["print(f())"])
        self.assertEqual(task.content, "    return 2")
        self.assertEqual((task.target_start_line, task.target_end_line), (2, 2))
        self.assertEqual(task.edit_strategy(), "safe_edit")

    def test_memory_content_from_next_line(self) -> None:
        (task,) = parse_directives("🔧 MEMORY create build-cmd\nmake release")
        self.assertEqual((task.memory_id, task.memory_content), ("build-cmd", "make release"))

    def test_escaped_newlines(self) -> None:
        tasks = parse_directives("🔧 READ a.py\\n🔧 LIST src")
        self.assertEqual([t.type for t in tasks], ["ReadFile", "ListDir"])

    def test_duplicates_are_dropped(self) -> None:
        tasks = parse_directives("🔧 READ a.py\n🔧 READ a.py\n🔧 READ b.py")
        self.assertEqual([t.path for t in tasks], ["a.py", "b.py"])

    def test_dedup_key(self) -> None:
        self.assertEqual(dedup_key(Task(type="ReadFile", path="a.py")), "ReadFile:a.py")
        self.assertEqual(dedup_key(Task(type="RunShell", command="ls")), "RunShell:ls")
        self.assertEqual(dedup_key(Task(type="Search", query="q", path=".")), "Search:q@.")


if __name__ == "__main__":
    unittest.main()
