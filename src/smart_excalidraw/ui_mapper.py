from typing import Any, Dict, List, Sequence, Tuple

from .layout import endpoint_id
from .postprocess import CONNECTOR_TYPES

DiagramElement = Dict[str, Any]
PositionMap = Dict[str, Tuple[float, float]]


def to_flow_node_specs(elements: Sequence[DiagramElement]) -> List[Dict[str, Any]]:
    positions = _element_positions(elements)
    edges = _connector_pairs(elements, positions)
    source_positions, target_positions = _resolve_node_handle_positions(positions, edges)

    specs: List[Dict[str, Any]] = []
    for element in elements:
        element_id = str(element.get("id", ""))
        if element_id not in positions or element.get("containerId"):
            continue
        specs.append(
            {
                "id": element_id,
                "pos": positions[element_id],
                "data": {"content": element_label(element)},
                "node_type": _node_type(element_id, edges),
                "source_position": source_positions.get(element_id, "bottom"),
                "target_position": target_positions.get(element_id, "top"),
                "draggable": True,
                "style": _node_style(element),
            }
        )
    return specs


def to_flow_edge_specs(elements: Sequence[DiagramElement]) -> List[Dict[str, Any]]:
    positions = _element_positions(elements)
    specs: List[Dict[str, Any]] = []
    for index, element in enumerate(elements, start=1):
        if element.get("type") not in CONNECTOR_TYPES:
            continue
        source = endpoint_id(element, "start")
        target = endpoint_id(element, "end")
        if source not in positions or target not in positions:
            continue

        edge_type = "smoothstep"
        sy = positions[source][1]
        ty = positions[target][1]
        if ty < sy:
            edge_type = "step"
        elif abs(ty - sy) < 1e-6:
            edge_type = "straight"

        specs.append(
            {
                "id": str(element.get("id") or f"edge_{index}"),
                "source": source,
                "target": target,
                "label": element_label(element),
                "animated": element.get("type") == "arrow",
                "edge_type": edge_type,
            }
        )
    return specs


def element_label(element: DiagramElement) -> str:
    label = element.get("label")
    if isinstance(label, dict) and label.get("text"):
        return str(label["text"])
    if isinstance(label, str) and label:
        return label
    if element.get("text"):
        return str(element["text"])
    return ""


def _element_positions(elements: Sequence[DiagramElement]) -> PositionMap:
    positions: PositionMap = {}
    for element in elements:
        if element.get("type") in CONNECTOR_TYPES or element.get("id") is None:
            continue
        x = element.get("x")
        y = element.get("y")
        if not isinstance(x, (int, float)) or not isinstance(y, (int, float)):
            continue
        positions[str(element["id"])] = (float(x), float(y))
    return positions


def _connector_pairs(elements: Sequence[DiagramElement], positions: PositionMap) -> List[Tuple[str, str]]:
    pairs: List[Tuple[str, str]] = []
    for element in elements:
        if element.get("type") not in CONNECTOR_TYPES:
            continue
        source = endpoint_id(element, "start")
        target = endpoint_id(element, "end")
        if source in positions and target in positions:
            pairs.append((source, target))
    return pairs


def _node_type(element_id: str, edges: List[Tuple[str, str]]) -> str:
    has_incoming = any(target == element_id for _, target in edges)
    has_outgoing = any(source == element_id for source, _ in edges)
    if has_outgoing and not has_incoming:
        return "input"
    if has_incoming and not has_outgoing:
        return "output"
    return "default"


def _node_style(element: DiagramElement) -> Dict[str, str]:
    style: Dict[str, str] = {}
    stroke = element.get("strokeColor")
    background = element.get("backgroundColor")
    if stroke:
        style["border"] = f"2px solid {stroke}"
    if background and background != "transparent":
        style["backgroundColor"] = str(background)
    if element.get("type") == "ellipse":
        style["borderRadius"] = "50%"
    return style


def _resolve_node_handle_positions(
    positions: PositionMap, edges: List[Tuple[str, str]]
) -> Tuple[Dict[str, str], Dict[str, str]]:
    outgoing: Dict[str, List[Tuple[float, float]]] = {node_id: [] for node_id in positions}
    incoming: Dict[str, List[Tuple[float, float]]] = {node_id: [] for node_id in positions}

    for source, target in edges:
        sx, sy = positions[source]
        tx, ty = positions[target]
        outgoing[source].append((tx - sx, ty - sy))
        incoming[target].append((tx - sx, ty - sy))

    source_positions = {node_id: _choose_side(outgoing[node_id], "bottom", outgoing=True) for node_id in positions}
    target_positions = {node_id: _choose_side(incoming[node_id], "top", outgoing=False) for node_id in positions}
    return source_positions, target_positions


def _choose_side(vectors: List[Tuple[float, float]], default: str, outgoing: bool) -> str:
    if not vectors:
        return default

    scores = {"top": 0.0, "bottom": 0.0, "left": 0.0, "right": 0.0}
    for dx, dy in vectors:
        if abs(dx) > abs(dy):
            toward_right = dx >= 0 if outgoing else dx < 0
            scores["right" if toward_right else "left"] += abs(dx)
        else:
            toward_bottom = dy >= 0 if outgoing else dy < 0
            scores["bottom" if toward_bottom else "top"] += abs(dy)

    order = ("bottom", "right", "left", "top") if outgoing else ("top", "left", "right", "bottom")
    return max(order, key=lambda side: scores[side])
