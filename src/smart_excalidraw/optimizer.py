import json
import logging
from typing import Any, Dict, List, Protocol, Sequence

from .errors import ExtractionError, OptimizationError
from .extraction import parse_element_array
from .normalizer import normalize_response
from .postprocess import ColorScheme
from .prompts import (
    COLOR_SUGGESTION_PROMPT,
    LAYOUT_OPTIMIZATION_PROMPT,
    build_color_prompt,
    build_layout_prompt,
)

logger = logging.getLogger(__name__)

DiagramElement = Dict[str, Any]

SIMPLIFIED_FIELDS = ("id", "type", "x", "y", "width", "height", "label", "start", "end")


class TextCompletionClient(Protocol):
    def complete_text(self, messages: List[Dict[str, Any]], system_prompt: str = "", temperature: float = 0.2) -> str:
        ...


def optimize_layout_with_ai(
    elements: Sequence[DiagramElement], client: TextCompletionClient
) -> List[DiagramElement]:
    if not elements:
        raise ValueError("No elements to optimize")

    simplified = [{key: element.get(key) for key in SIMPLIFIED_FIELDS} for element in elements]
    response = client.complete_text(
        [{"role": "user", "content": build_layout_prompt(simplified)}],
        system_prompt=LAYOUT_OPTIMIZATION_PROMPT,
    )

    try:
        optimized = parse_element_array(normalize_response(response))
    except ExtractionError as exc:
        logger.warning("Failed to parse AI layout result: %s", exc)
        raise OptimizationError("AI 优化失败：无法解析返回结果") from exc

    originals = {element.get("id"): element for element in elements}
    merged: List[DiagramElement] = []
    for item in optimized:
        if not isinstance(item, dict):
            continue
        original = originals.get(item.get("id"))
        if original is None:
            continue
        updated = dict(original)
        updated["x"] = item.get("x")
        updated["y"] = item.get("y")
        updated["width"] = item.get("width") or original.get("width")
        updated["height"] = item.get("height") or original.get("height")
        merged.append(updated)
    return merged


def suggest_color_scheme_with_ai(
    elements: Sequence[DiagramElement], context: str, client: TextCompletionClient
) -> ColorScheme:
    response = client.complete_text(
        [{"role": "user", "content": build_color_prompt(context, len(elements))}],
        system_prompt=COLOR_SUGGESTION_PROMPT,
    )
    try:
        raw = _extract_json_object(response)
    except ValueError as exc:
        logger.warning("Failed to parse color suggestion: %s", exc)
        raise OptimizationError("配色建议失败：无法解析返回结果") from exc
    return ColorScheme.from_dict(raw)


def _extract_json_object(text: str) -> Dict[str, Any]:
    text = (text or "").strip()
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise ValueError("Model response did not include JSON object.")
    parsed = json.loads(text[start : end + 1])
    if not isinstance(parsed, dict):
        raise ValueError("Model response did not include JSON object.")
    return parsed
