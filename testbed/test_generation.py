import json

from src.smart_excalidraw.config import ProviderConfig
from src.smart_excalidraw.errors import ProviderHTTPError, StreamError
from src.smart_excalidraw.extraction import SceneState
from src.smart_excalidraw.generation import GenerationPipeline, consume_stream, optimize_and_apply
from src.smart_excalidraw.history import HistoryRepository


def _provider(provider_type="openai"):
    return ProviderConfig(
        id="p1", name="stub", type=provider_type, base_url="https://x/v1", api_key="k", model="m"
    )


def _chunks(text, size=7):
    return [text[i : i + size] for i in range(0, len(text), size)]


def _diagram_code():
    return json.dumps(
        [
            {"id": "a", "type": "rectangle", "x": 0, "y": 0, "width": 120, "height": 60},
            {"id": "b", "type": "rectangle", "x": 0, "y": 200, "width": 10, "height": 5},
            {"id": "e", "type": "arrow", "x": 0, "y": 0, "width": 1, "height": 1, "start": {"id": "a"}, "end": {"id": "b"}},
        ],
        ensure_ascii=False,
    )


class StubStreamingClient:
    def __init__(self, chunks=None, error=None, enabled=True, provider_type="openai"):
        self.provider = _provider(provider_type)
        self.chunks = chunks or []
        self.error = error
        self.enabled = enabled
        self.calls = []

    def is_enabled(self):
        return self.enabled

    def stream_chat(self, messages, system_prompt="", temperature=0.2):
        self.calls.append({"messages": messages, "system_prompt": system_prompt})
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


def test_consume_stream_reports_every_chunk():
    scene = SceneState()
    updates = []
    code = "```json\n" + _diagram_code() + "\n```"

    final = consume_stream(_chunks(code), scene, lambda text, state: updates.append(len(state.elements)))

    assert final == _diagram_code()
    assert len(updates) == len(_chunks(code))
    assert updates[-1] == 3
    assert all(count in (0, 3) for count in updates)


def test_pipeline_generates_fixes_and_saves_history(tmp_path):
    history = HistoryRepository(tmp_path)
    client = StubStreamingClient(_chunks("```json\n" + _diagram_code() + "\n```"))
    pipeline = GenerationPipeline(client, history=history)

    outcome = pipeline.run("login flow", chart_type="flowchart")

    assert outcome.ok
    by_id = {element["id"]: element for element in outcome.elements}
    assert (by_id["b"]["width"], by_id["b"]["height"]) == (50, 30)
    assert [fix.element_id for fix in outcome.fixes] == ["b"]
    assert by_id["e"]["points"][0] == [0, 0]
    assert json.loads(outcome.code) == outcome.elements
    assert pipeline.scene.elements == outcome.elements

    saved = history.get_diagram(outcome.history_id)
    assert saved["chartType"] == "flowchart"
    assert saved["userInput"] == "login flow"
    assert saved["elements"] == outcome.elements

    prompt = client.calls[0]["messages"][0]["content"]
    assert "flowchart" in prompt
    assert "login flow" in prompt
    assert client.calls[0]["system_prompt"]


def test_pipeline_rejects_disabled_client():
    client = StubStreamingClient(enabled=False)
    outcome = GenerationPipeline(client).run("anything")

    assert not outcome.ok
    assert outcome.error_kind == "config_error"
    assert client.calls == []


def test_pipeline_reports_stream_error_and_keeps_scene():
    scene = SceneState([{"id": "old"}])
    client = StubStreamingClient(["[{\"id\":"], error=StreamError("overloaded"))

    outcome = GenerationPipeline(client, scene=scene).run("x")

    assert not outcome.ok
    assert outcome.error_kind == "stream_error"
    assert outcome.message == "overloaded"
    assert scene.elements == [{"id": "old"}]


def test_pipeline_reports_http_error():
    client = StubStreamingClient(error=ProviderHTTPError(401))
    outcome = GenerationPipeline(client).run("x")

    assert outcome.error_kind == "http_error"
    assert "API 密钥无效" in outcome.message


def test_pipeline_reports_missing_array_at_stream_end(tmp_path):
    history = HistoryRepository(tmp_path)
    client = StubStreamingClient(["Sorry, ", "I cannot draw that."])
    outcome = GenerationPipeline(client, history=history).run("x")

    assert not outcome.ok
    assert outcome.error_kind == "no_array_found"
    assert outcome.code == "Sorry, I cannot draw that."
    assert history.list_history() == []


def test_pipeline_sends_image_in_provider_format():
    from src.smart_excalidraw.llm_client import validate_image_upload

    image = validate_image_upload("sketch.png", b"png-bytes", "image/png")
    client = StubStreamingClient(["[]"], provider_type="anthropic")
    outcome = GenerationPipeline(client).run("", image=image)

    assert outcome.ok
    content = client.calls[0]["messages"][0]["content"]
    assert content[0]["type"] == "image"
    assert content[1]["type"] == "text"


def test_optimize_and_apply_updates_scene():
    scene = SceneState()
    optimized, result = optimize_and_apply(scene, _diagram_code())

    assert result.ok
    assert scene.elements == json.loads(optimized)
