"""
Tests for oxyflow.utils.output_extraction module.
"""

import pytest

from oxyflow.utils.output_extraction import (
    extract_json_object,
    extract_text,
    extract_think,
    strip_think,
)


class TestThink:
    """Test handling of <think> blocks."""

    def test_strip_think(self):
        assert strip_think("<think>plan</think>\n  Answer ") == "Answer"

    def test_strip_keeps_text_after_last_tag(self):
        assert strip_think("a</think>b</think> c") == "c"

    def test_strip_without_tag(self):
        assert strip_think("  plain ") == "plain"
        assert strip_think("") == ""

    def test_extract_think(self):
        assert extract_think("<think>\n step one \n</think>done") == "step one"
        assert extract_think("no reasoning") == ""


class TestExtractJsonObject:
    """Test JSON extraction from model output."""

    def test_bare_json(self):
        assert extract_json_object('{"tool_name": "calc"}') == {"tool_name": "calc"}

    def test_fenced_json(self):
        text = 'Sure.\n```json\n{"a": 1}\n```\nDone.'
        assert extract_json_object(text) == {"a": 1}

    def test_embedded_in_prose(self):
        text = 'I will call {"tool_name": "calc", "arguments": {"a": 1}} now'
        assert extract_json_object(text) == {"tool_name": "calc", "arguments": {"a": 1}}

    def test_braces_inside_strings(self):
        text = 'note {"text": "a } inside", "n": 2} end'
        assert extract_json_object(text) == {"text": "a } inside", "n": 2}

    def test_skips_invalid_candidate(self):
        text = "{not json} then {\"ok\": true}"
        assert extract_json_object(text) == {"ok": True}

    @pytest.mark.parametrize("text", ["", "no braces", "[1, 2]", '{"open": 1'])
    def test_nothing_to_extract(self, text):
        assert extract_json_object(text) is None


class TestExtractText:
    """Test text extraction from assorted outputs."""

    def test_values(self):
        assert extract_text(None) == ""
        assert extract_text("hi") == "hi"
        assert extract_text(42) == "42"

    def test_dict_keys_in_order(self):
        assert extract_text({"text": "t", "output": "o"}) == "o"
        assert extract_text({"answer": 5}) == "5"

    def test_dict_without_known_key(self):
        assert extract_text({"x": "é"}) == '{"x": "é"}'

    def test_object_with_content(self):
        class Reply:
            content = "from object"

        assert extract_text(Reply()) == "from object"
