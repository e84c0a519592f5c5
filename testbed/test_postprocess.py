import itertools

from src.smart_excalidraw.postprocess import (
    COLOR_PALETTES,
    ColorScheme,
    apply_color_palette,
    apply_color_scheme,
    apply_positional_colors,
    auto_fix_diagram,
    calculate_diagram_stats,
    detect_overlaps,
    get_color_palette,
    list_color_palettes,
)


def _rect(element_id, x, y, width=100, height=100):
    return {"id": element_id, "type": "rectangle", "x": x, "y": y, "width": width, "height": height}


def test_auto_fix_enforces_minimum_size():
    result = auto_fix_diagram([_rect("r1", 0, 0, width=10, height=5)])

    assert result.has_issues
    assert result.elements[0]["width"] == 50
    assert result.elements[0]["height"] == 30
    assert len(result.fixes) == 1
    assert result.fixes[0].element_id == "r1"
    assert result.fixes[0].issue == "元素尺寸过小"
    assert result.fixes[0].to_dict() == {"id": "r1", "issue": "元素尺寸过小", "fix": "调整为最小尺寸"}


def test_auto_fix_keeps_large_dimension_when_other_is_small():
    result = auto_fix_diagram([_rect("r1", 0, 0, width=200, height=10)])
    assert result.elements[0]["width"] == 200
    assert result.elements[0]["height"] == 30


def test_auto_fix_connector_zero_width_and_empty_text():
    elements = [
        {"id": "a1", "type": "arrow", "x": 0, "y": 0, "width": 0, "height": 80},
        {"id": "t1", "type": "text", "x": 0, "y": 0, "width": 60, "height": 40, "text": "   "},
    ]
    result = auto_fix_diagram(elements)

    assert result.elements[0]["width"] == 50
    assert result.elements[0]["height"] == 80
    assert result.elements[1]["text"] == "文本"
    assert [fix.rule for fix in result.fixes] == ["zero_width_connector", "min_size", "empty_text"]


def test_auto_fix_sizes_flat_connectors():
    elements = [
        {"id": "a1", "type": "arrow", "x": 0, "y": 0, "width": 200, "height": 0},
        {"id": "l1", "type": "line", "x": 0, "y": 0, "width": 20, "height": 100},
        {"id": "a2", "type": "arrow", "x": 0, "y": 0, "width": 200, "height": 40},
    ]
    result = auto_fix_diagram(elements)

    assert (result.elements[0]["width"], result.elements[0]["height"]) == (200, 50)
    assert (result.elements[1]["width"], result.elements[1]["height"]) == (50, 100)
    assert result.elements[2] is elements[2]
    assert [(fix.element_id, fix.rule) for fix in result.fixes] == [("a1", "min_size"), ("l1", "min_size")]

    again = auto_fix_diagram(result.elements)
    assert not again.has_issues
    assert again.elements == result.elements


def test_auto_fix_clamps_opacity():
    elements = [
        dict(_rect("hi", 0, 0), opacity=150),
        dict(_rect("lo", 300, 0), opacity=-5),
    ]
    result = auto_fix_diagram(elements)

    assert result.elements[0]["opacity"] == 100
    assert result.elements[1]["opacity"] == 0
    assert all(fix.issue == "不透明度超出范围" for fix in result.fixes)


def test_auto_fix_preserves_untouched_elements_and_input():
    good = _rect("ok", 0, 0)
    bad = _rect("bad", 300, 0, width=1, height=1)
    result = auto_fix_diagram([good, bad])

    assert result.elements[0] is good
    assert result.elements[1] is not bad
    assert bad["width"] == 1


def test_auto_fix_is_idempotent():
    elements = [
        _rect("r1", 0, 0, width=10, height=5),
        {"id": "a1", "type": "arrow", "x": 0, "y": 0, "width": 0, "height": 0},
        {"id": "l1", "type": "line", "x": 0, "y": 0, "width": 0, "height": 20},
        {"id": "t1", "type": "text", "x": 0, "y": 0, "text": ""},
        dict(_rect("o1", 0, 0), opacity=300),
    ]
    first = auto_fix_diagram(elements)
    second = auto_fix_diagram(first.elements)

    assert first.has_issues
    assert not second.has_issues
    assert second.elements == first.elements


def test_auto_fix_without_issues():
    result = auto_fix_diagram([_rect("a", 0, 0)])
    assert not result.has_issues
    assert result.fixes == []


def test_detect_overlaps_reports_each_pair_once():
    a = _rect("A", 0, 0)
    b = _rect("B", 50, 50)
    c = _rect("C", 300, 300, width=10, height=10)

    overlaps = detect_overlaps([a, b])
    assert [pair.ids for pair in overlaps] == [frozenset({"A", "B"})]
    assert [pair.ids for pair in detect_overlaps([a, b, c])] == [frozenset({"A", "B"})]


def test_detect_overlaps_is_symmetric_in_input_order():
    elements = [_rect("A", 0, 0), _rect("B", 50, 50), _rect("C", 90, 90), _rect("D", 500, 500)]
    expected = {pair.ids for pair in detect_overlaps(elements)}

    for ordering in itertools.permutations(elements):
        assert {pair.ids for pair in detect_overlaps(list(ordering))} == expected


def test_detect_overlaps_edge_contact_is_not_overlap():
    assert detect_overlaps([_rect("A", 0, 0), _rect("B", 100, 0)]) == []


def test_detect_overlaps_skips_connectors_and_uses_default_size():
    elements = [
        {"id": "n1", "type": "ellipse", "x": 0, "y": 0},
        {"id": "n2", "type": "diamond", "x": 90, "y": 40},
        {"id": "arr", "type": "arrow", "x": 0, "y": 0, "width": 500, "height": 500},
        {"id": "floating", "type": "text"},
    ]
    overlaps = detect_overlaps(elements)
    assert [pair.to_dict() for pair in overlaps] == [{"elementA": "n1", "elementB": "n2"}]


def test_positional_colors_cycle_through_palette():
    elements = [_rect("a", 0, 0), _rect("b", 200, 0), _rect("c", 400, 0)]
    colored = apply_positional_colors(elements, ["#111111", "#222222"], "#ffffff")

    assert [element["strokeColor"] for element in colored] == ["#111111", "#222222", "#111111"]
    assert all(element["backgroundColor"] == "#ffffff" for element in colored)
    assert "strokeColor" not in elements[0]


def test_apply_color_palette_colors_by_type():
    palette = get_color_palette("modern")
    elements = [
        _rect("r", 0, 0),
        {"id": "a", "type": "arrow", "x": 0, "y": 0},
        {"id": "t", "type": "text", "x": 0, "y": 0, "text": "hi"},
        {"id": "f", "type": "freedraw", "x": 0, "y": 0},
    ]
    colored = apply_color_palette(elements, "modern")

    assert colored[0]["strokeColor"] == palette.colors[0]
    assert colored[0]["backgroundColor"] == palette.background
    assert colored[1]["strokeColor"] == palette.colors[1]
    assert "backgroundColor" not in colored[1]
    assert colored[2]["strokeColor"] == palette.colors[0]
    assert colored[3] == elements[3]


def test_unknown_palette_falls_back_to_professional():
    assert get_color_palette("neon").key == "professional"
    assert [palette.key for palette in list_color_palettes()] == list(COLOR_PALETTES.keys())
    assert len(COLOR_PALETTES) == 6


def test_apply_color_scheme_uses_primary_secondary_accent():
    scheme = ColorScheme.from_dict(
        {"primary": "#1", "secondary": "#2", "accent": "#3", "background": "#bg", "reasoning": "calm"}
    )
    elements = [_rect(str(i), i * 200, 0) for i in range(4)]
    colored = apply_color_scheme(elements, scheme)

    assert [element["strokeColor"] for element in colored] == ["#1", "#2", "#3", "#1"]
    assert colored[0]["backgroundColor"] == "#bg"
    assert scheme.reasoning == "calm"


def test_calculate_diagram_stats():
    elements = [
        _rect("A", 0, 0),
        _rect("B", 50, 50),
        {"id": "a", "type": "arrow", "x": 10, "y": 10, "width": 400, "height": 0},
        {"id": "t", "type": "text"},
    ]
    stats = calculate_diagram_stats(elements)

    assert stats.total_elements == 4
    assert stats.by_type == {"rectangle": 2, "arrow": 1, "text": 1}
    assert stats.bounds == {"minX": 0, "maxX": 410, "minY": 0, "maxY": 150}
    assert stats.overlap_count == 1
    assert stats.has_overlaps
    assert stats.to_dict()["totalElements"] == 4


def test_calculate_diagram_stats_empty():
    stats = calculate_diagram_stats([])
    assert stats.total_elements == 0
    assert stats.bounds == {"minX": 0.0, "maxX": 0.0, "minY": 0.0, "maxY": 0.0}
    assert not stats.has_overlaps
