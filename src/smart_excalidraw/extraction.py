import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import ExtractionError, MalformedJsonError, NoArrayFoundError

logger = logging.getLogger(__name__)

DiagramElement = Dict[str, Any]
Diagram = List[DiagramElement]


@dataclass
class ExtractionResult:
    ok: bool
    elements: Diagram = field(default_factory=list)
    error_kind: str = ""
    message: str = ""

    @classmethod
    def success(cls, elements: Diagram) -> "ExtractionResult":
        return cls(ok=True, elements=elements)

    @classmethod
    def failure(cls, error: ExtractionError) -> "ExtractionResult":
        return cls(ok=False, error_kind=error.kind, message=str(error))


def locate_array(text: str) -> Optional[str]:
    candidate = (text or "").strip()
    start = candidate.find("[")
    end = candidate.rfind("]")
    if start == -1 or end == -1 or end <= start:
        return None
    return candidate[start : end + 1]


def parse_element_array(text: str) -> Diagram:
    located = locate_array(text)
    if located is None:
        raise NoArrayFoundError()
    try:
        parsed = json.loads(located)
    except json.JSONDecodeError as exc:
        raise MalformedJsonError(str(exc)) from exc
    if not isinstance(parsed, list):
        raise NoArrayFoundError()
    return parsed


def try_extract(text: str) -> ExtractionResult:
    try:
        return ExtractionResult.success(parse_element_array(text))
    except ExtractionError as exc:
        return ExtractionResult.failure(exc)


class SceneState:
    def __init__(self, elements: Optional[Diagram] = None) -> None:
        self.elements: Diagram = list(elements or [])
        self.last_error: Optional[ExtractionResult] = None
        self.revision = 0
        self._last_text: Optional[str] = None
        self._last_result: Optional[ExtractionResult] = None

    def apply(self, text: str) -> ExtractionResult:
        if self._last_result is not None and text == self._last_text:
            return self._last_result

        result = try_extract(text)
        if result.ok:
            self.elements = result.elements
            self.last_error = None
            self.revision += 1
            logger.debug("Scene updated with %d element(s)", len(result.elements))
        else:
            self.last_error = result
            logger.debug("Scene kept after %s: %s", result.error_kind, result.message)

        self._last_text = text
        self._last_result = result
        return result

    def replace(self, elements: Diagram) -> None:
        self.elements = list(elements)
        self.last_error = None
        self.revision += 1
        self._forget()

    def clear(self) -> None:
        self.replace([])

    def _forget(self) -> None:
        self._last_text = None
        self._last_result = None
