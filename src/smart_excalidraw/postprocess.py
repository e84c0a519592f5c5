from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

DiagramElement = Dict[str, Any]
Diagram = List[DiagramElement]

MIN_WIDTH = 50
MIN_HEIGHT = 30
DEFAULT_WIDTH = 100
DEFAULT_HEIGHT = 50
EMPTY_TEXT_PLACEHOLDER = "文本"

SHAPE_TYPES = {"rectangle", "ellipse", "diamond"}
CONNECTOR_TYPES = {"arrow", "line"}


@dataclass(frozen=True)
class Fix:
    element_id: str
    rule: str
    issue: str
    action: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.element_id, "issue": self.issue, "fix": self.action}


@dataclass
class AutoFixResult:
    elements: Diagram
    fixes: List[Fix] = field(default_factory=list)

    @property
    def has_issues(self) -> bool:
        return len(self.fixes) > 0


@dataclass(frozen=True)
class OverlapPair:
    element_a: str
    element_b: str

    @property
    def ids(self) -> frozenset:
        return frozenset((self.element_a, self.element_b))

    def to_dict(self) -> Dict[str, str]:
        return {"elementA": self.element_a, "elementB": self.element_b}


@dataclass(frozen=True)
class ColorPalette:
    key: str
    name: str
    colors: Tuple[str, ...]
    background: str
    description: str = ""


@dataclass(frozen=True)
class ColorScheme:
    primary: str
    secondary: str
    accent: str
    background: str
    reasoning: str = ""

    @property
    def colors(self) -> Tuple[str, str, str]:
        return (self.primary, self.secondary, self.accent)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ColorScheme":
        return cls(
            primary=str(raw.get("primary", "")).strip(),
            secondary=str(raw.get("secondary", "")).strip(),
            accent=str(raw.get("accent", "")).strip(),
            background=str(raw.get("background", "")).strip(),
            reasoning=str(raw.get("reasoning", "") or "").strip(),
        )


@dataclass
class DiagramStats:
    total_elements: int
    by_type: Dict[str, int]
    bounds: Dict[str, float]
    overlap_count: int

    @property
    def has_overlaps(self) -> bool:
        return self.overlap_count > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalElements": self.total_elements,
            "byType": dict(self.by_type),
            "hasOverlaps": self.has_overlaps,
            "overlapCount": self.overlap_count,
            "bounds": dict(self.bounds),
        }


COLOR_PALETTES: Dict[str, ColorPalette] = {
    "professional": ColorPalette(
        key="professional",
        name="专业商务",
        colors=("#1e40af", "#059669", "#dc2626", "#7c3aed", "#ea580c"),
        background="#ffffff",
        description="适合商务演示和专业报告",
    ),
    "modern": ColorPalette(
        key="modern",
        name="现代简约",
        colors=("#0ea5e9", "#10b981", "#f59e0b", "#ec4899", "#8b5cf6"),
        background="#ffffff",
        description="清新现代，适合科技和创新主题",
    ),
    "warm": ColorPalette(
        key="warm",
        name="温暖活力",
        colors=("#f97316", "#eab308", "#ef4444", "#f472b6", "#fb923c"),
        background="#fffbeb",
        description="充满活力，适合创意和营销",
    ),
    "cool": ColorPalette(
        key="cool",
        name="冷静沉稳",
        colors=("#0284c7", "#0891b2", "#06b6d4", "#0d9488", "#14b8a6"),
        background="#f0fdfa",
        description="沉稳专业，适合技术和分析",
    ),
    "pastel": ColorPalette(
        key="pastel",
        name="柔和淡雅",
        colors=("#93c5fd", "#86efac", "#fcd34d", "#f9a8d4", "#c4b5fd"),
        background="#fefce8",
        description="温柔舒适，适合教育和展示",
    ),
    "dark": ColorPalette(
        key="dark",
        name="深色主题",
        colors=("#60a5fa", "#34d399", "#fbbf24", "#f472b6", "#a78bfa"),
        background="#1f2937",
        description="适合深色模式和夜间查看",
    ),
}


def auto_fix_diagram(elements: Sequence[DiagramElement]) -> AutoFixResult:
    fixes: List[Fix] = []
    fixed_elements: Diagram = []

    for element in elements:
        fixed = dict(element)
        element_fixes: List[Fix] = []
        element_id = str(element.get("id", ""))
        element_type = element.get("type")
        width = _number(element.get("width"))
        height = _number(element.get("height"))

        # Zero-width connectors are widened first, then sized like every other element.
        if element_type in CONNECTOR_TYPES and width == 0:
            width = 1
            fixed["width"] = width
            element_fixes.append(Fix(element_id, "zero_width_connector", "箭头宽度为0", "设置为1"))

        if (width is not None and width < MIN_WIDTH) or (height is not None and height < MIN_HEIGHT):
            fixed["width"] = max(width or DEFAULT_WIDTH, MIN_WIDTH)
            fixed["height"] = max(height or DEFAULT_HEIGHT, MIN_HEIGHT)
            element_fixes.append(Fix(element_id, "min_size", "元素尺寸过小", "调整为最小尺寸"))

        if element_type == "text" and not str(element.get("text") or "").strip():
            fixed["text"] = EMPTY_TEXT_PLACEHOLDER
            element_fixes.append(Fix(element_id, "empty_text", "文本为空", "添加默认文本"))

        opacity = _number(element.get("opacity"))
        if opacity is not None and (opacity < 0 or opacity > 100):
            fixed["opacity"] = max(0, min(100, opacity))
            element_fixes.append(Fix(element_id, "opacity_range", "不透明度超出范围", "调整为有效范围"))

        fixes.extend(element_fixes)
        fixed_elements.append(fixed if element_fixes else element)

    return AutoFixResult(elements=fixed_elements, fixes=fixes)


def detect_overlaps(elements: Sequence[DiagramElement]) -> List[OverlapPair]:
    boxes = []
    for element in elements:
        if element.get("type") in CONNECTOR_TYPES:
            continue
        x = _number(element.get("x"))
        y = _number(element.get("y"))
        if x is None or y is None:
            continue
        width = _number(element.get("width")) or DEFAULT_WIDTH
        height = _number(element.get("height")) or DEFAULT_HEIGHT
        boxes.append((str(element.get("id", "")), x, y, width, height))

    overlaps: List[OverlapPair] = []
    for i in range(len(boxes)):
        a_id, ax, ay, aw, ah = boxes[i]
        for j in range(i + 1, len(boxes)):
            b_id, bx, by, bw, bh = boxes[j]
            x_overlap = ax < bx + bw and ax + aw > bx
            y_overlap = ay < by + bh and ay + ah > by
            if x_overlap and y_overlap:
                overlaps.append(OverlapPair(a_id, b_id))
    return overlaps


def get_color_palette(palette_key: str) -> ColorPalette:
    return COLOR_PALETTES.get(palette_key, COLOR_PALETTES["professional"])


def list_color_palettes() -> List[ColorPalette]:
    return list(COLOR_PALETTES.values())


def apply_color_palette(elements: Sequence[DiagramElement], palette_key: str) -> Diagram:
    palette = get_color_palette(palette_key)
    return apply_positional_colors(elements, palette.colors, palette.background)


def apply_color_scheme(elements: Sequence[DiagramElement], scheme: ColorScheme) -> Diagram:
    return apply_positional_colors(elements, scheme.colors, scheme.background)


def calculate_diagram_stats(elements: Sequence[DiagramElement]) -> DiagramStats:
    by_type: Dict[str, int] = {}
    for element in elements:
        element_type = str(element.get("type", "unknown"))
        by_type[element_type] = by_type.get(element_type, 0) + 1

    bounds = {"minX": 0.0, "maxX": 0.0, "minY": 0.0, "maxY": 0.0}
    positions = []
    for element in elements:
        x = _number(element.get("x"))
        y = _number(element.get("y"))
        if x is None or y is None:
            continue
        width = _number(element.get("width")) or 0.0
        height = _number(element.get("height")) or 0.0
        positions.append((x, y, width, height))

    if positions:
        bounds = {
            "minX": min(x for x, _, _, _ in positions),
            "maxX": max(x + w for x, _, w, _ in positions),
            "minY": min(y for _, y, _, _ in positions),
            "maxY": max(y + h for _, y, _, h in positions),
        }

    return DiagramStats(
        total_elements=len(elements),
        by_type=by_type,
        bounds=bounds,
        overlap_count=len(detect_overlaps(elements)),
    )


def apply_positional_colors(
    elements: Sequence[DiagramElement], colors: Sequence[str], background: str
) -> Diagram:
    if not colors:
        return [dict(element) for element in elements]

    updated_elements: Diagram = []
    for index, element in enumerate(elements):
        updated = dict(element)
        element_type = element.get("type")
        color = colors[index % len(colors)]
        if element_type in SHAPE_TYPES:
            updated["strokeColor"] = color
            updated["backgroundColor"] = background
        elif element_type in CONNECTOR_TYPES:
            updated["strokeColor"] = color
        elif element_type == "text":
            updated["strokeColor"] = colors[0]
        updated_elements.append(updated)
    return updated_elements


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value
