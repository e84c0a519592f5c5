import json

import pytest

pytest.importorskip("networkx")

from src.smart_excalidraw.layout import (
    arrange_layered_layout,
    endpoint_id,
    optimize_arrows,
    optimize_scene_code,
)
from src.smart_excalidraw.postprocess import detect_overlaps


def _box(element_id, x, y, width=120, height=60, element_type="rectangle"):
    return {"id": element_id, "type": element_type, "x": x, "y": y, "width": width, "height": height}


def _arrow(element_id, source, target):
    return {
        "id": element_id,
        "type": "arrow",
        "x": 0,
        "y": 0,
        "width": 10,
        "height": 10,
        "start": {"id": source},
        "end": {"id": target},
    }


def test_endpoint_id_reads_skeleton_and_binding_forms():
    assert endpoint_id({"start": {"id": "a"}}, "start") == "a"
    assert endpoint_id({"endBinding": {"elementId": "b"}}, "end") == "b"
    assert endpoint_id({"start": "a"}, "start") is None


def test_optimize_arrows_anchors_vertical_flow():
    elements = [_box("a", 0, 0), _box("b", 0, 200), _arrow("e", "a", "b")]
    optimized = optimize_arrows(elements)

    arrow = optimized[2]
    assert (arrow["x"], arrow["y"]) == (60.0, 60.0)
    assert arrow["points"] == [[0, 0], [0.0, 140.0]]
    assert arrow["width"] == 0
    assert arrow["height"] == 140
    assert optimized[0] is elements[0]


def test_optimize_arrows_anchors_horizontal_and_reverse_flow():
    elements = [_box("a", 300, 0), _box("b", 0, 0), _arrow("e", "a", "b")]
    arrow = optimize_arrows(elements)[2]

    assert (arrow["x"], arrow["y"]) == (300.0, 30.0)
    assert arrow["points"] == [[0, 0], [-180.0, 0.0]]
    assert arrow["width"] == 180


def test_optimize_arrows_leaves_unbound_connectors():
    loose = {"id": "l", "type": "line", "x": 5, "y": 5, "width": 10, "height": 0}
    dangling = _arrow("d", "a", "missing")
    elements = [_box("a", 0, 0), loose, dangling]
    optimized = optimize_arrows(elements)

    assert optimized[1] is loose
    assert optimized[2] is dangling


def test_optimize_scene_code_returns_invalid_code_unchanged():
    assert optimize_scene_code("not an array") == "not an array"


def test_optimize_scene_code_accepts_fenced_code():
    code = "```json\n" + json.dumps([_box("a", 0, 0), _box("b", 0, 200), _arrow("e", "a", "b")]) + "\n```"
    optimized = json.loads(optimize_scene_code(code))

    assert optimized[2]["y"] == 60.0
    assert optimized[2]["points"][1] == [0.0, 140.0]


def test_layered_layout_orders_chain_top_down_without_overlaps():
    elements = [
        _box("c", 0, 0),
        _box("a", 0, 0),
        _box("b", 0, 0),
        _arrow("e1", "a", "b"),
        _arrow("e2", "b", "c"),
    ]
    arranged = arrange_layered_layout(elements)
    by_id = {element["id"]: element for element in arranged}

    assert by_id["a"]["y"] < by_id["b"]["y"] < by_id["c"]["y"]
    assert detect_overlaps(arranged) == []
    assert min(by_id[key]["x"] for key in "abc") >= 120.0
    assert min(by_id[key]["y"] for key in "abc") >= 80.0


def test_layered_layout_handles_cycles_and_moves_bound_labels():
    label = {"id": "lbl", "type": "text", "x": 10, "y": 10, "text": "A", "containerId": "a"}
    elements = [
        _box("a", 0, 0),
        label,
        _box("b", 0, 0),
        _arrow("e1", "a", "b"),
        _arrow("e2", "b", "a"),
    ]
    arranged = arrange_layered_layout(elements)
    by_id = {element["id"]: element for element in arranged}

    assert by_id["a"]["y"] < by_id["b"]["y"]
    assert by_id["lbl"]["x"] - by_id["a"]["x"] == pytest.approx(10.0)
    assert by_id["lbl"]["y"] - by_id["a"]["y"] == pytest.approx(10.0)
    assert by_id["e1"]["points"][1][1] > 0


def test_layered_layout_without_shapes_returns_copy():
    elements = [{"id": "t", "type": "text", "x": 0, "y": 0, "text": "only"}]
    assert arrange_layered_layout(elements) == elements
