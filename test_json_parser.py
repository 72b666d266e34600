"""
Tests for JSON recovery from generated text.
"""

import pytest

from site_extractor.json_parser import (
    extract_fields, iter_json_candidates, parse_json_response, strip_code_fences,
)
from site_extractor.exceptions import ResponseParseError


class TestDirect:

    def test_plain_object(self):
        data, strategy = parse_json_response('{"title": "Markets rally", "price": null}')
        assert data == {"title": "Markets rally", "price": None}
        assert strategy == "direct"

    def test_code_fences(self):
        data, strategy = parse_json_response('```json\n{"title": "Fenced"}\n```')
        assert data == {"title": "Fenced"}
        assert strategy == "direct"

    def test_strip_code_fences_without_language(self):
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'


class TestBraceScan:

    def test_leading_and_trailing_chatter(self):
        text = 'Here you go: {"title": "a {brace} inside", "n": 1} Hope this helps!'
        data, strategy = parse_json_response(text)
        assert data == {"title": "a {brace} inside", "n": 1}
        assert strategy == "brace_scan"

    def test_escaped_quote_before_brace(self):
        text = 'Result: {"title": "He said \\"hi\\" }", "author": null}'
        data, strategy = parse_json_response(text)
        assert data["title"] == 'He said "hi" }'
        assert data["author"] is None
        assert strategy == "brace_scan"

    def test_nested_objects(self):
        text = 'Output -> {"title": "T", "meta": {"lang": "en"}} <- done'
        data, _ = parse_json_response(text)
        assert data["meta"] == {"lang": "en"}

    def test_skips_invalid_first_candidate(self):
        data, strategy = parse_json_response('note {not json} then {"title": "ok"}')
        assert data == {"title": "ok"}
        assert strategy == "brace_scan"

    def test_candidates_respect_strings(self):
        assert list(iter_json_candidates('a {"k": "}"} b {"z": 1}')) == ['{"k": "}"}', '{"z": 1}']

    def test_unbalanced_yields_nothing(self):
        assert list(iter_json_candidates('{"title": "open')) == []


class TestFieldRegex:

    def test_truncated_object(self):
        text = (
            '{"title": "Truncated", "price": "$5", "ingredients": ["flour", "sugar"], '
            '"confidence_score": 80, "author": null, "description": "cut off'
        )
        data, strategy = parse_json_response(text)
        assert strategy == "field_regex"
        assert data == {
            "title": "Truncated",
            "price": "$5",
            "ingredients": ["flour", "sugar"],
            "confidence_score": 80,
            "author": None,
        }

    def test_escapes_are_decoded(self):
        assert extract_fields('"title": "Line\\nbreak \\"quoted\\""') == {"title": 'Line\nbreak "quoted"'}

    def test_float_values(self):
        assert extract_fields('"confidence_score": 72.5,') == {"confidence_score": 72.5}


class TestFailure:

    @pytest.mark.parametrize("text", [None, "", "   ", "I could not find anything useful.", "[1, 2, 3]"])
    def test_unrecoverable(self, text):
        with pytest.raises(ResponseParseError) as exc_info:
            parse_json_response(text)
        assert exc_info.value.message.startswith("JSON parsing failed")
