import json
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import networkx as nx

from .errors import ExtractionError
from .extraction import parse_element_array
from .normalizer import normalize_response
from .postprocess import CONNECTOR_TYPES, DEFAULT_HEIGHT, DEFAULT_WIDTH

logger = logging.getLogger(__name__)

DiagramElement = Dict[str, Any]
Diagram = List[DiagramElement]
Box = Tuple[float, float, float, float]
Point = Tuple[float, float]
PositionMap = Dict[str, Point]

LAYER_GAP_X = 80.0
LAYER_GAP_Y = 100.0
PADDING_X = 120.0
PADDING_Y = 80.0


def optimize_scene_code(code: str) -> str:
    normalized = normalize_response(code)
    try:
        elements = parse_element_array(normalized)
    except ExtractionError as exc:
        logger.debug("Skipping arrow optimization: %s", exc)
        return code
    return json.dumps(optimize_arrows(elements), ensure_ascii=False, indent=2)


def optimize_arrows(elements: Sequence[DiagramElement]) -> Diagram:
    boxes = _shape_boxes(elements)
    optimized: Diagram = []
    for element in elements:
        if element.get("type") not in CONNECTOR_TYPES:
            optimized.append(element)
            continue
        start_id = endpoint_id(element, "start")
        end_id = endpoint_id(element, "end")
        if start_id not in boxes or end_id not in boxes or start_id == end_id:
            optimized.append(element)
            continue
        optimized.append(_anchor_connector(element, boxes[start_id], boxes[end_id]))
    return optimized


def arrange_layered_layout(elements: Sequence[DiagramElement]) -> Diagram:
    boxes = _shape_boxes(elements)
    node_ids = [
        str(element["id"])
        for element in elements
        if element.get("type") not in CONNECTOR_TYPES
        and element.get("type") != "text"
        and str(element.get("id", "")) in boxes
    ]
    if not node_ids:
        return list(elements)

    graph = nx.DiGraph()
    graph.add_nodes_from(node_ids)
    for element in elements:
        if element.get("type") not in CONNECTOR_TYPES:
            continue
        source = endpoint_id(element, "start")
        target = endpoint_id(element, "end")
        if source in graph and target in graph and source != target:
            graph.add_edge(source, target)

    dag = _make_acyclic(graph, node_ids)
    layers = _reduce_crossings(dag, _build_layers(_assign_levels(dag, node_ids), node_ids))
    positions = _place_layers(layers, boxes)

    moved: Dict[str, Point] = {}
    arranged: Diagram = []
    for element in elements:
        element_id = str(element.get("id", ""))
        if element_id in positions:
            x, y = positions[element_id]
            old_x, old_y, _, _ = boxes[element_id]
            moved[element_id] = (x - old_x, y - old_y)
            updated = dict(element)
            updated["x"] = x
            updated["y"] = y
            arranged.append(updated)
        else:
            arranged.append(element)

    # Bound labels follow their container.
    for index, element in enumerate(arranged):
        container_id = element.get("containerId")
        if element.get("type") != "text" or container_id not in moved:
            continue
        dx, dy = moved[container_id]
        updated = dict(element)
        updated["x"] = float(element.get("x") or 0.0) + dx
        updated["y"] = float(element.get("y") or 0.0) + dy
        arranged[index] = updated

    return optimize_arrows(arranged)


def endpoint_id(element: DiagramElement, side: str) -> Optional[str]:
    ref = element.get(side)
    if isinstance(ref, dict) and ref.get("id") is not None:
        return str(ref["id"])
    binding = element.get(f"{side}Binding")
    if isinstance(binding, dict) and binding.get("elementId") is not None:
        return str(binding["elementId"])
    return None


def _shape_boxes(elements: Sequence[DiagramElement]) -> Dict[str, Box]:
    boxes: Dict[str, Box] = {}
    for element in elements:
        if element.get("type") in CONNECTOR_TYPES:
            continue
        x = element.get("x")
        y = element.get("y")
        if not _is_number(x) or not _is_number(y) or element.get("id") is None:
            continue
        width = element.get("width") if _is_number(element.get("width")) else 0
        height = element.get("height") if _is_number(element.get("height")) else 0
        boxes[str(element["id"])] = (
            float(x),
            float(y),
            float(width or DEFAULT_WIDTH),
            float(height or DEFAULT_HEIGHT),
        )
    return boxes


def _anchor_connector(element: DiagramElement, start_box: Box, end_box: Box) -> DiagramElement:
    start_point, end_point = _facing_points(start_box, end_box)
    dx = end_point[0] - start_point[0]
    dy = end_point[1] - start_point[1]
    updated = dict(element)
    updated["x"] = start_point[0]
    updated["y"] = start_point[1]
    updated["width"] = abs(dx)
    updated["height"] = abs(dy)
    updated["points"] = [[0, 0], [dx, dy]]
    return updated


def _facing_points(start_box: Box, end_box: Box) -> Tuple[Point, Point]:
    sx, sy, sw, sh = start_box
    ex, ey, ew, eh = end_box
    start_center = (sx + sw / 2.0, sy + sh / 2.0)
    end_center = (ex + ew / 2.0, ey + eh / 2.0)
    dx = end_center[0] - start_center[0]
    dy = end_center[1] - start_center[1]

    if abs(dx) > abs(dy):
        if dx >= 0:
            return (sx + sw, start_center[1]), (ex, end_center[1])
        return (sx, start_center[1]), (ex + ew, end_center[1])
    if dy >= 0:
        return (start_center[0], sy + sh), (end_center[0], ey)
    return (start_center[0], sy), (end_center[0], ey + eh)


def _place_layers(layers: List[List[str]], boxes: Dict[str, Box]) -> PositionMap:
    column_width = max(boxes[node_id][2] for layer in layers for node_id in layer) + LAYER_GAP_X
    positions: PositionMap = {}
    y = 0.0
    for layer in layers:
        row_height = max(boxes[node_id][3] for node_id in layer)
        start_x = -((len(layer) - 1) * column_width) / 2.0
        for index, node_id in enumerate(layer):
            _, _, width, height = boxes[node_id]
            center_x = start_x + index * column_width
            positions[node_id] = (center_x - width / 2.0, y + (row_height - height) / 2.0)
        y += row_height + LAYER_GAP_Y
    return _shift_positions_to_positive(positions)


def _make_acyclic(graph: nx.DiGraph, ordered_node_ids: List[str]) -> nx.DiGraph:
    order = {node_id: idx for idx, node_id in enumerate(ordered_node_ids)}
    dag = graph.copy()

    while not nx.is_directed_acyclic_graph(dag):
        cycle = next(nx.simple_cycles(dag), None)
        if not cycle:
            return dag

        cycle_edges = []
        for idx in range(len(cycle)):
            source = cycle[idx]
            target = cycle[(idx + 1) % len(cycle)]
            if dag.has_edge(source, target):
                cycle_edges.append((source, target))
        if not cycle_edges:
            return dag

        # Drop the most backward edge in element order.
        edge_to_remove = max(
            cycle_edges,
            key=lambda edge: (
                order.get(edge[0], 0) - order.get(edge[1], 0),
                order.get(edge[0], 0),
                -order.get(edge[1], 0),
            ),
        )
        dag.remove_edge(*edge_to_remove)
    return dag


def _assign_levels(dag: nx.DiGraph, ordered_node_ids: List[str]) -> Dict[str, int]:
    levels: Dict[str, int] = {node_id: 0 for node_id in ordered_node_ids}
    for node_id in nx.topological_sort(dag):
        preds = list(dag.predecessors(node_id))
        if preds:
            levels[node_id] = max(levels[pred] + 1 for pred in preds)
    return levels


def _build_layers(levels: Dict[str, int], ordered_node_ids: List[str]) -> List[List[str]]:
    layer_map: Dict[int, List[str]] = {}
    for node_id in ordered_node_ids:
        layer_map.setdefault(levels.get(node_id, 0), []).append(node_id)
    return [layer_map[level] for level in sorted(layer_map.keys())]


def _reduce_crossings(dag: nx.DiGraph, layers: List[List[str]], sweeps: int = 6) -> List[List[str]]:
    if len(layers) <= 1:
        return layers

    arranged = [list(layer) for layer in layers]
    for _ in range(sweeps):
        for layer_idx in range(1, len(arranged)):
            arranged[layer_idx] = _order_layer_by_reference(
                arranged[layer_idx], arranged[layer_idx - 1], dag.predecessors
            )
        for layer_idx in range(len(arranged) - 2, -1, -1):
            arranged[layer_idx] = _order_layer_by_reference(
                arranged[layer_idx], arranged[layer_idx + 1], dag.successors
            )
    return arranged


def _order_layer_by_reference(
    target_layer: List[str],
    reference_layer: List[str],
    neighbor_getter: Callable[[str], Any],
) -> List[str]:
    ref_index = {node_id: idx for idx, node_id in enumerate(reference_layer)}
    current_index = {node_id: idx for idx, node_id in enumerate(target_layer)}

    def key(node_id: str) -> Tuple[float, int]:
        neighbors = [n for n in neighbor_getter(node_id) if n in ref_index]
        if neighbors:
            barycenter = sum(ref_index[n] for n in neighbors) / float(len(neighbors))
        else:
            barycenter = float(current_index[node_id])
        return barycenter, current_index[node_id]

    return sorted(target_layer, key=key)


def _shift_positions_to_positive(positions: PositionMap) -> PositionMap:
    if not positions:
        return positions
    min_x = min(pos[0] for pos in positions.values())
    min_y = min(pos[1] for pos in positions.values())
    shift_x = -min_x + PADDING_X if min_x < PADDING_X else 0.0
    shift_y = -min_y + PADDING_Y if min_y < PADDING_Y else 0.0
    return {node_id: (float(x + shift_x), float(y + shift_y)) for node_id, (x, y) in positions.items()}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
