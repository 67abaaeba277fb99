"""Tests for evidence_qa/common/llm_helpers.py - lenient JSON parsing of model output."""

import pytest

from evidence_qa.common.llm_helpers import parse_json_object, parse_json_response


class TestParseJsonResponse:
    def test_plain_json(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_markdown_json_fence(self):
        assert parse_json_response('Here you go:\n```json\n{"a": 1}\n```') == {"a": 1}

    def test_bare_fence(self):
        assert parse_json_response('```\n[1, 2]\n```') == [1, 2]

    @pytest.mark.parametrize("content", [None, "", "not json", "```json\n{broken\n```"])
    def test_invalid_returns_none(self, content):
        assert parse_json_response(content) is None


class TestParseJsonObject:
    def test_object_passes_through(self):
        assert parse_json_object('{"answer": "x"}') == {"answer": "x"}

    @pytest.mark.parametrize("content", ["[1, 2]", '"text"', "42", "garbage"])
    def test_non_objects_become_empty(self, content):
        assert parse_json_object(content) == {}
