import json
from typing import Any, Dict, List, Sequence

CHART_TYPES: Dict[str, str] = {
    "auto": "自动选择",
    "flowchart": "流程图",
    "mindmap": "思维导图",
    "orgchart": "组织架构图",
    "sequence": "时序图",
    "class": "UML类图",
    "er": "ER图",
    "gantt": "甘特图",
    "timeline": "时间线",
    "tree": "树形图",
    "network": "网络拓扑图",
    "architecture": "架构图",
    "dataflow": "数据流图",
    "state": "状态图",
    "swimlane": "泳道图",
    "concept": "概念图",
    "fishbone": "鱼骨图",
    "swot": "SWOT分析图",
    "pyramid": "金字塔图",
    "funnel": "漏斗图",
    "venn": "韦恩图",
    "matrix": "矩阵图",
    "infographic": "信息图",
}

SYSTEM_PROMPT = """You are an Excalidraw diagram generator.
Return ONLY a JSON array of Excalidraw element skeletons. No prose, no markdown fences.

Element rules:
- Every element has a unique string "id", a "type" and numeric "x", "y".
- Shapes: "rectangle", "ellipse", "diamond" with "width", "height", "strokeColor",
  "backgroundColor" and an optional "label": {"text": "..."}.
- Connectors: "arrow" or "line" with "x", "y", "width", "height" and
  "start": {"id": "<shape id>"}, "end": {"id": "<shape id>"} when they connect shapes.
  Arrows may carry a "label": {"text": "..."}.
- Free text: "text" with a non-empty "text" and "fontSize".
- Keep shapes at least 120x60, leave 80px or more between shapes and never overlap them.
- Escape double quotes inside string values as \\".
- Match the language of the user's request for all labels."""


def normalize_chart_type(chart_type: str) -> str:
    key = (chart_type or "").strip().lower()
    return key if key in CHART_TYPES else "auto"


def list_chart_types() -> List[Dict[str, str]]:
    return [{"id": key, "name": name} for key, name in CHART_TYPES.items()]


def build_generation_prompt(user_input: str, chart_type: str = "auto") -> str:
    key = normalize_chart_type(chart_type)
    request = (user_input or "").strip()
    if key == "auto":
        chart_line = "Chart type: choose the most suitable diagram type for the request."
    else:
        chart_line = f"Chart type: {key} ({CHART_TYPES[key]})."
    return (
        f"{chart_line}\n\n"
        "User request:\n"
        f"{request or '(describe the attached image as a diagram)'}\n\n"
        "Output the complete element array now."
    )


LAYOUT_OPTIMIZATION_PROMPT = """You are a diagram layout expert. Analyse the Excalidraw elements provided
and improve their layout.

Goals:
1. Remove overlaps between elements.
2. Keep spacing between elements even and generous.
3. Align related elements.
4. Arrange elements by logical hierarchy (top-down flows, layered architectures).
5. Keep the overall layout visually balanced.

Only change x, y, width and height. Keep every id.
Output a pure JSON array, nothing else."""

COLOR_SUGGESTION_PROMPT = """You are a color design expert. Recommend the best color scheme for the
diagram described, considering diagram type, usage context, readability and contrast.

Return JSON only:
{
  "primary": "#hex",
  "secondary": "#hex",
  "accent": "#hex",
  "background": "#hex",
  "reasoning": "why this scheme fits"
}"""


def build_layout_prompt(simplified_elements: Sequence[Dict[str, Any]]) -> str:
    return "Optimize the layout of this diagram:\n\n" + json.dumps(
        list(simplified_elements), ensure_ascii=False, indent=2
    )


def build_color_prompt(context: str, element_count: int) -> str:
    return (
        f"Diagram context: {(context or '').strip() or '(none)'}\n\n"
        f"Element count: {element_count}\n\n"
        "Recommend a color scheme."
    )
