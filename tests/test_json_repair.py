import json
import logging

from utils.common import canonical_json, parse_model_json


def test_latex_command_is_repaired():
    text = '[{"stem": "$4 \\times 10^{-5}$"}]'

    result = parse_model_json(text)

    assert result == [{"stem": r"$4 \times 10^{-5}$"}]


def test_markdown_fence_is_stripped():
    text = '```json\n[{"stem": "Plain stem", "a": "one"}]\n```'

    assert parse_model_json(text) == [{"stem": "Plain stem", "a": "one"}]


def test_escaped_latex_is_left_alone():
    text = r'[{"a": "$\\frac{1}{2} mv^{2}$"}]'

    assert parse_model_json(text) == [{"a": r"$\frac{1}{2} mv^{2}$"}]


def test_mixed_single_and_double_backslashes():
    text = r'[{"a": "$\vec{A} \\cdot \vec{B}$"}]'

    assert parse_model_json(text) == [{"a": r"$\vec{A} \cdot \vec{B}$"}]


def test_control_escapes_not_followed_by_letters_survive():
    text = r'[{"stem": "line 1\n2 and café"}]'

    assert parse_model_json(text) == [{"stem": "line 1\n2 and café"}]


def test_double_encoded_payload_is_unwrapped():
    inner = [{"stem": "s", "a": "x"}]
    text = json.dumps(json.dumps(inner))

    assert parse_model_json(text) == inner


def test_unparseable_text_yields_empty_list_and_is_logged(caplog):
    with caplog.at_level(logging.ERROR):
        result = parse_model_json("Sorry, I could not read the image.")

    assert result == []
    assert "Sorry, I could not read the image." in caplog.text


def test_empty_and_non_text_input():
    assert parse_model_json("") == []
    assert parse_model_json(None) == []


def test_canonical_json_ignores_key_order():
    first = {"b": 1, "a": {"y": [1, 2], "x": "ক"}}
    second = {"a": {"x": "ক", "y": [1, 2]}, "b": 1}

    assert canonical_json(first) == canonical_json(second)
    assert "ক" in canonical_json(first)


def test_real_newline_before_a_word_survives():
    text = '[{"stem": "Line one.\\nThe ball is thrown.", "a": "Tab\\tseparated"}]'

    assert parse_model_json(text) == [{"stem": "Line one.\nThe ball is thrown.", "a": "Tab\tseparated"}]


def test_latex_commands_that_look_like_escapes_are_kept():
    text = '[{"stem": "$\\theta = \\frac{\\pi}{4}$, $\\nabla \\cdot E = \\rho$"}]'

    result = parse_model_json(text)

    assert result == [{"stem": r"$\theta = \frac{\pi}{4}$, $\nabla \cdot E = \rho$"}]


def test_trailing_commas_are_repaired():
    text = '[{"stem": "s", "a": "x",}, {"stem": "t", "a": "y"},]'

    assert parse_model_json(text) == [{"stem": "s", "a": "x"}, {"stem": "t", "a": "y"}]


def test_prose_around_json_is_ignored():
    text = 'Here are the questions: [{"stem": "s", "a": "$\\vec{F}$",}]'

    assert parse_model_json(text) == [{"stem": "s", "a": r"$\vec{F}$"}]
