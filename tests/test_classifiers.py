import unittest

from loom_agent.classifiers import (
    extract_content_from_json,
    is_conversational_text,
    is_descriptive_text,
    is_diff_formatted_content,
    is_structured_content_line,
)


class ConversationalTextTests(unittest.TestCase):
    def test_prose_about_a_file_is_conversational(self):
        line = "Read the file has been updated"
        self.assertTrue(is_conversational_text(line, "READ", "the file has been updated"))

    def test_plain_directive_is_not_conversational(self):
        self.assertFalse(is_conversational_text("read config.yaml", "READ", "config.yaml"))

    def test_exclamation_marks_prose(self):
        self.assertTrue(is_conversational_text("Edit done!", "EDIT", "done!"))

    def test_memory_status_words(self):
        self.assertTrue(is_conversational_text("memory stored for later", "MEMORY", "stored for later"))


class PayloadClassificationTests(unittest.TestCase):
    def test_structured_lines(self):
        self.assertTrue(is_structured_content_line('{"name": "app"}'))
        self.assertTrue(is_structured_content_line("port: 8080"))
        self.assertTrue(is_structured_content_line("def main():"))
        self.assertTrue(is_structured_content_line("DEBUG=1"))
        self.assertFalse(is_structured_content_line("Hello there."))

    def test_descriptive_lines(self):
        self.assertTrue(is_descriptive_text("This will add logging."))
        self.assertTrue(is_descriptive_text("Updated the configuration"))
        self.assertFalse(is_descriptive_text("x = 1"))

    def test_extract_content_from_json(self):
        self.assertEqual(extract_content_from_json('{"content": "x = 1"} trailing words'), "x = 1")
        self.assertEqual(extract_content_from_json('{"other": 1}'), "")
        self.assertEqual(extract_content_from_json("not json"), "")


class DiffFormattedContentTests(unittest.TestCase):
    def test_diff_lines_are_detected(self):
        self.assertTrue(is_diff_formatted_content("+added\n-removed\n context"))

    def test_bullet_list_is_not_a_diff(self):
        self.assertFalse(is_diff_formatted_content("- one\n- two\n- three"))

    def test_mostly_code_is_not_a_diff(self):
        self.assertFalse(is_diff_formatted_content("a = 1\nb = 2\nc = 3\n+x\n-y"))


if __name__ == "__main__":
    unittest.main()
