import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from .errors import ConfigError, GenerationError
from .extraction import ExtractionResult, SceneState
from .history import HistoryRepository
from .layout import optimize_scene_code
from .llm_client import ImageInput, build_user_message
from .normalizer import normalize_response
from .postprocess import Fix, auto_fix_diagram
from .prompts import SYSTEM_PROMPT, build_generation_prompt, normalize_chart_type
from .scene_file import elements_to_code

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[str, SceneState], None]


class StreamingClient(Protocol):
    provider: Any

    def is_enabled(self) -> bool:
        ...

    def stream_chat(self, messages: List[Dict[str, Any]], system_prompt: str = "", temperature: float = 0.2) -> Iterable[str]:
        ...


@dataclass
class GenerationOutcome:
    ok: bool
    code: str = ""
    elements: List[Dict[str, Any]] = field(default_factory=list)
    fixes: List[Fix] = field(default_factory=list)
    history_id: Optional[str] = None
    error_kind: str = ""
    message: str = ""


def consume_stream(
    chunks: Iterable[str],
    scene: SceneState,
    on_update: Optional[UpdateCallback] = None,
) -> str:
    buffer = ""
    normalized = ""
    for chunk in chunks:
        if not chunk:
            continue
        buffer += chunk
        normalized = normalize_response(buffer)
        scene.apply(normalized)
        if on_update is not None:
            on_update(normalized, scene)
    return normalized


def optimize_and_apply(scene: SceneState, code: str) -> Tuple[str, ExtractionResult]:
    optimized = optimize_scene_code(code)
    return optimized, scene.apply(optimized)


class GenerationPipeline:
    def __init__(
        self,
        client: StreamingClient,
        scene: Optional[SceneState] = None,
        history: Optional[HistoryRepository] = None,
    ) -> None:
        self.client = client
        self.scene = scene or SceneState()
        self.history = history

    def run(
        self,
        user_input: str,
        chart_type: str = "auto",
        image: Optional[ImageInput] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> GenerationOutcome:
        if not self.client.is_enabled():
            error = ConfigError("请先配置您的 LLM 提供商")
            return GenerationOutcome(ok=False, error_kind=error.kind, message=str(error))

        chart_key = normalize_chart_type(chart_type)
        message = build_user_message(
            self.client.provider.type, build_generation_prompt(user_input, chart_key), image
        )
        logger.info("Generating %s diagram (%d chars of input)", chart_key, len(user_input or ""))

        try:
            code = consume_stream(
                self.client.stream_chat([message], system_prompt=SYSTEM_PROMPT),
                self.scene,
                on_update,
            )
        except GenerationError as exc:
            logger.warning("Generation aborted (%s): %s", exc.kind, exc)
            return GenerationOutcome(ok=False, error_kind=exc.kind, message=str(exc))

        result = self.scene.apply(code)
        if not result.ok:
            logger.warning("Stream ended without a valid array: %s", result.message)
            return GenerationOutcome(
                ok=False, code=code, error_kind=result.error_kind, message=result.message
            )

        optimized, _ = optimize_and_apply(self.scene, code)
        fixed = auto_fix_diagram(self.scene.elements)
        if fixed.has_issues:
            self.scene.replace(fixed.elements)
            optimized = elements_to_code(fixed.elements)
            logger.info("Auto-fix applied %d correction(s)", len(fixed.fixes))

        outcome = GenerationOutcome(
            ok=True,
            code=optimized,
            elements=list(self.scene.elements),
            fixes=fixed.fixes,
        )
        outcome.history_id = self._save_history(outcome, user_input, chart_key)
        return outcome

    def _save_history(self, outcome: GenerationOutcome, user_input: str, chart_type: str) -> Optional[str]:
        if self.history is None:
            return None
        try:
            return self.history.save_diagram(
                code=outcome.code,
                elements=outcome.elements,
                title=f"图表 - {datetime.now().strftime('%m/%d %H:%M')}",
                description=(user_input or "")[:100],
                chart_type=chart_type,
                user_input=user_input or "",
            )
        except (OSError, ValueError) as exc:
            logger.error("Failed to save to history: %s", exc)
            return None
