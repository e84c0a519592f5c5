import json
import re
from typing import Any, Dict, List, Optional, Sequence

from .errors import MalformedJsonError, NoArrayFoundError
from .extraction import parse_element_array

DiagramElement = Dict[str, Any]

SCENE_SOURCE = "https://excalidraw.com"
SCENE_VERSION = 2
SUPPORTED_EXTENSIONS = {".excalidraw", ".json"}
UPLOAD_ENCODINGS = ("utf-8-sig", "utf-8")


def load_scene_text(text: str) -> List[DiagramElement]:
    stripped = (text or "").strip()
    if stripped.startswith("{"):
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError as exc:
            raise MalformedJsonError(str(exc)) from exc
        elements = data.get("elements") if isinstance(data, dict) else None
        if not isinstance(elements, list):
            raise NoArrayFoundError("无效的 Excalidraw 文件格式")
        return elements
    return parse_element_array(stripped)


def decode_upload(content_bytes: bytes) -> str:
    for encoding in UPLOAD_ENCODINGS:
        try:
            return content_bytes.decode(encoding)
        except UnicodeDecodeError:
            continue
    return content_bytes.decode("utf-8", errors="replace")


def elements_to_code(elements: Sequence[DiagramElement]) -> str:
    return json.dumps(list(elements), ensure_ascii=False, indent=2)


def build_scene_file(
    elements: Sequence[DiagramElement],
    view_background_color: str = "#ffffff",
    grid_size: Optional[int] = None,
) -> Dict[str, Any]:
    return {
        "type": "excalidraw",
        "version": SCENE_VERSION,
        "source": SCENE_SOURCE,
        "elements": list(elements),
        "appState": {
            "viewBackgroundColor": view_background_color,
            "gridSize": grid_size,
        },
    }


def dump_scene_file(
    elements: Sequence[DiagramElement],
    view_background_color: str = "#ffffff",
    grid_size: Optional[int] = None,
) -> str:
    return json.dumps(
        build_scene_file(elements, view_background_color, grid_size), ensure_ascii=False, indent=2
    )


def get_export_filename(title: str, fmt: str = "excalidraw") -> str:
    base = re.sub(r"[\\/:*?\"<>|\s]+", "_", (title or "").strip()).strip("_") or "diagram"
    return f"{base}.{fmt.lstrip('.').lower()}"
