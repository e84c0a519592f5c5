from importlib import import_module
from typing import Any

__all__ = [
    "normalize_response",
    "parse_element_array",
    "try_extract",
    "SceneState",
    "auto_fix_diagram",
    "detect_overlaps",
    "apply_color_palette",
    "apply_color_scheme",
    "calculate_diagram_stats",
    "optimize_scene_code",
    "GenerationPipeline",
]

_EXPORTS = {
    "normalize_response": ".normalizer",
    "parse_element_array": ".extraction",
    "try_extract": ".extraction",
    "SceneState": ".extraction",
    "auto_fix_diagram": ".postprocess",
    "detect_overlaps": ".postprocess",
    "apply_color_palette": ".postprocess",
    "apply_color_scheme": ".postprocess",
    "calculate_diagram_stats": ".postprocess",
    "optimize_scene_code": ".layout",
    "GenerationPipeline": ".generation",
}


def __getattr__(name: str) -> Any:
    if name in _EXPORTS:
        module = import_module(_EXPORTS[name], __name__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
