import json

from resume_engine.utils.json_recovery import (
    STRATEGY_BRACE_SPAN,
    STRATEGY_DIRECT,
    STRATEGY_TRUNCATION,
    close_open_brackets,
    recover_json_object,
    strip_code_fences,
)


class TestRecoverJsonObject:
    def test_fenced_output(self):
        obj, strategy = recover_json_object('```json\n{"summary":"ok"}\n```')
        assert obj == {"summary": "ok"}
        assert strategy == STRATEGY_DIRECT

    def test_prose_around_object(self):
        obj, strategy = recover_json_object('Here is the result: {"a": 1, "b": [1, 2]} Hope this helps!')
        assert obj == {"a": 1, "b": [1, 2]}
        assert strategy == STRATEGY_BRACE_SPAN

    def test_truncated_object_keeps_complete_prefix(self):
        truncated = (
            '{"contactInfo": {"name": "Jane"}, "experience": '
            '[{"company": "Acme", "title": "Engineer"}, {"company": "Glob'
        )
        obj, strategy = recover_json_object(truncated)
        assert strategy == STRATEGY_TRUNCATION
        assert obj["contactInfo"] == {"name": "Jane"}
        assert obj["experience"][0]["company"] == "Acme"

    def test_valid_input_never_loses_to_recovery(self):
        payload = {"summary": "ok", "skills": ["python"]}
        obj, strategy = recover_json_object(json.dumps(payload))
        assert obj == payload
        assert strategy == STRATEGY_DIRECT

    def test_unrecoverable(self):
        assert recover_json_object("no json here") == (None, None)
        assert recover_json_object("") == (None, None)
        assert recover_json_object(None) == (None, None)

    def test_arrays_are_not_objects(self):
        assert recover_json_object("[1, 2, 3]") == (None, None)


class TestHelpers:
    def test_strip_code_fences(self):
        assert strip_code_fences("```\n{}\n```") == "{}"
        assert strip_code_fences("  {}  ") == "{}"

    def test_close_open_brackets_ignores_brackets_in_strings(self):
        assert close_open_brackets('{"a": ["x{", "y"') == '{"a": ["x{", "y"]}'

    def test_close_open_brackets_drops_dangling_comma(self):
        assert json.loads(close_open_brackets('{"a": 1,')) == {"a": 1}
