import json

import pytest

from src.smart_excalidraw.errors import MalformedJsonError, NoArrayFoundError
from src.smart_excalidraw.extraction import SceneState, locate_array, parse_element_array, try_extract
from src.smart_excalidraw.normalizer import normalize_response


def _sample_code():
    return json.dumps(
        [
            {"id": "a", "type": "rectangle", "x": 0, "y": 0, "width": 120, "height": 60},
            {"id": "b", "type": "rectangle", "x": 0, "y": 200, "width": 120, "height": 60},
            {
                "id": "e1",
                "type": "arrow",
                "x": 60,
                "y": 60,
                "width": 0,
                "height": 140,
                "points": [[0, 0], [0, 140]],
                "start": {"id": "a"},
                "end": {"id": "b"},
            },
        ]
    )


def test_parse_element_array_ignores_surrounding_prose():
    elements = parse_element_array('Here you go: [{"id": "a", "type": "text"}] Enjoy!')
    assert elements == [{"id": "a", "type": "text"}]


def test_missing_array_raises_no_array_found():
    with pytest.raises(NoArrayFoundError) as exc_info:
        parse_element_array("no brackets at all")
    assert exc_info.value.kind == "no_array_found"

    with pytest.raises(NoArrayFoundError):
        parse_element_array("[1, 2")
    with pytest.raises(NoArrayFoundError):
        parse_element_array("] before [")


def test_malformed_array_raises_with_parser_message():
    with pytest.raises(MalformedJsonError) as exc_info:
        parse_element_array("[{,}]")
    assert exc_info.value.kind == "malformed_json"
    assert str(exc_info.value).startswith("JSON 语法错误")
    assert exc_info.value.parser_message


def test_locate_array_spans_first_open_to_last_close():
    assert locate_array('x [1, [2]] y') == "[1, [2]]"
    assert locate_array("") is None


def test_try_extract_returns_tagged_outcome():
    ok = try_extract("[]")
    assert ok.ok and ok.elements == []

    failed = try_extract("nothing")
    assert not failed.ok
    assert failed.error_kind == "no_array_found"
    assert failed.message


def test_scene_keeps_previous_elements_on_failure():
    scene = SceneState()
    assert scene.apply(_sample_code()).ok
    before = scene.elements

    result = scene.apply('[{"id": "a", "type": ')
    assert not result.ok
    assert scene.elements is before
    assert scene.last_error is result
    assert scene.revision == 1


def test_scene_memoizes_identical_text():
    scene = SceneState()
    code = _sample_code()
    first = scene.apply(code)
    second = scene.apply(code)

    assert second is first
    assert scene.revision == 1


def test_scene_replace_and_clear_reset_memo():
    scene = SceneState()
    code = _sample_code()
    scene.apply(code)

    scene.replace([{"id": "z", "type": "text", "text": "z"}])
    assert scene.revision == 2
    assert scene.elements[0]["id"] == "z"

    scene.apply(code)
    assert scene.revision == 3
    assert len(scene.elements) == 3

    scene.clear()
    assert scene.elements == []
    assert scene.last_error is None


def test_streamed_prefixes_converge_without_partial_arrays():
    code = "```json\n" + _sample_code() + "\n```"
    final = json.loads(_sample_code())
    scene = SceneState()

    seen = []
    for end in range(1, len(code) + 1):
        scene.apply(normalize_response(code[:end]))
        seen.append(list(scene.elements))

    for elements in seen:
        assert elements in ([], final)
    assert seen[-1] == final


def test_prior_array_survives_later_garbage():
    scene = SceneState()
    scene.apply("[]")
    scene.apply('[{"id": "ok"}]')
    scene.apply("not json anymore")
    assert scene.elements == [{"id": "ok"}]
