from pathlib import Path
import sys
from dataclasses import replace

import streamlit as st
from streamlit_flow import streamlit_flow
from streamlit_flow.elements import StreamlitFlowEdge, StreamlitFlowNode
from streamlit_flow.state import StreamlitFlowState

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.append(str(ROOT_DIR))

from src.smart_excalidraw.config import (  # noqa: E402
    DEFAULT_BASE_URLS,
    DEFAULT_MODELS,
    PROVIDER_TYPES,
    ProviderConfig,
    ProviderStore,
    Session,
    configure_logging,
    get_data_dir,
    remove_provider,
    session_from_env,
    switch_provider,
    upsert_provider,
)
from src.smart_excalidraw.errors import (  # noqa: E402
    ConfigError,
    ExtractionError,
    GenerationError,
    HistoryError,
    ImageUploadError,
    OptimizationError,
)
from src.smart_excalidraw.extraction import SceneState  # noqa: E402
from src.smart_excalidraw.generation import GenerationPipeline, optimize_and_apply  # noqa: E402
from src.smart_excalidraw.history import HistoryRepository  # noqa: E402
from src.smart_excalidraw.layout import arrange_layered_layout  # noqa: E402
from src.smart_excalidraw.llm_client import StreamingLLMClient, validate_image_upload  # noqa: E402
from src.smart_excalidraw.optimizer import (  # noqa: E402
    optimize_layout_with_ai,
    suggest_color_scheme_with_ai,
)
from src.smart_excalidraw.postprocess import (  # noqa: E402
    apply_color_palette,
    apply_color_scheme,
    auto_fix_diagram,
    calculate_diagram_stats,
    list_color_palettes,
)
from src.smart_excalidraw.prompts import CHART_TYPES  # noqa: E402
from src.smart_excalidraw.scene_file import (  # noqa: E402
    SUPPORTED_EXTENSIONS,
    decode_upload,
    dump_scene_file,
    elements_to_code,
    get_export_filename,
    load_scene_text,
)
from src.smart_excalidraw.ui_mapper import to_flow_edge_specs, to_flow_node_specs  # noqa: E402

configure_logging()


@st.cache_resource
def get_provider_store() -> ProviderStore:
    return ProviderStore(get_data_dir())


@st.cache_resource
def get_history_repository() -> HistoryRepository:
    return HistoryRepository(get_data_dir())


def get_runtime_client() -> StreamingLLMClient:
    provider = st.session_state.session.current_provider()
    if provider is None:
        provider = ProviderConfig(id="", name="", type="openai", base_url="", api_key="", model="")
    return StreamingLLMClient(provider)


def ensure_state() -> None:
    if "session" not in st.session_state:
        stored = get_provider_store().load()
        st.session_state.session = stored if stored.providers else session_from_env()
    if "scene" not in st.session_state:
        st.session_state.scene = SceneState()
    if "code" not in st.session_state:
        st.session_state.code = ""
    if "code_editor" not in st.session_state:
        st.session_state.code_editor = ""
    if "last_fixes" not in st.session_state:
        st.session_state.last_fixes = []
    if "color_reasoning" not in st.session_state:
        st.session_state.color_reasoning = ""
    if "current_title" not in st.session_state:
        st.session_state.current_title = "diagram"
    if "flow_key_version" not in st.session_state:
        st.session_state.flow_key_version = 0


def set_code(code: str, sync_editor: bool = True) -> None:
    st.session_state.code = code
    if sync_editor:
        # Copied into the editor widget before it renders on the next run.
        st.session_state.pending_editor_code = code


def set_elements(elements: list) -> None:
    scene: SceneState = st.session_state.scene
    scene.replace(elements)
    set_code(elements_to_code(elements))
    st.session_state.flow_key_version += 1


def save_session(session: Session) -> None:
    st.session_state.session = get_provider_store().save(session)


def to_flow_state(elements: list) -> StreamlitFlowState:
    flow_nodes = [StreamlitFlowNode(**spec) for spec in to_flow_node_specs(elements)]
    flow_edges = [StreamlitFlowEdge(**spec) for spec in to_flow_edge_specs(elements)]
    return StreamlitFlowState(nodes=flow_nodes, edges=flow_edges)


def render_provider_settings() -> None:
    session: Session = st.session_state.session
    st.markdown("### LLM Provider")

    if session.providers:
        provider_ids = [provider.id for provider in session.providers]
        current_id = session.current_provider_id if session.current_provider_id in provider_ids else provider_ids[0]
        selected_id = st.selectbox(
            "Active Provider",
            provider_ids,
            index=provider_ids.index(current_id),
            format_func=lambda pid: f"{session.find(pid).name} · {session.find(pid).model}",
        )
        if selected_id != session.current_provider_id:
            save_session(switch_provider(session, selected_id))
            st.rerun()
    else:
        st.caption("No provider configured. Add one below or set OPENAI_API_KEY / ANTHROPIC_API_KEY.")

    current = session.current_provider()
    with st.expander("Add / Edit Provider", expanded=not session.providers):
        provider_type = st.radio(
            "Type",
            list(PROVIDER_TYPES),
            index=list(PROVIDER_TYPES).index(current.type) if current else 0,
            horizontal=True,
        )
        name = st.text_input("Name", value=current.name if current else provider_type)
        base_url = st.text_input(
            "Base URL", value=current.base_url if current else DEFAULT_BASE_URLS[provider_type]
        )
        api_key = st.text_input(
            "API Key",
            value=current.api_key if current else "",
            type="password",
            help="Stored in the local data directory.",
        )

        model_options = st.session_state.get("model_options", [])
        default_model = current.model if current else DEFAULT_MODELS[provider_type]
        if model_options:
            model = st.selectbox(
                "Model",
                model_options,
                index=model_options.index(default_model) if default_model in model_options else 0,
            )
        else:
            model = st.text_input("Model", value=default_model)

        draft = ProviderConfig(
            id=current.id if current else "",
            name=name.strip(),
            type=provider_type,
            base_url=base_url.strip().rstrip("/"),
            api_key=api_key.strip(),
            model=(model or "").strip(),
        )

        col_models, col_save = st.columns(2)
        if col_models.button("Load Models", use_container_width=True):
            try:
                st.session_state.model_options = StreamingLLMClient(draft).list_models()
                st.rerun()
            except (ConfigError, GenerationError, ValueError) as exc:
                st.error(str(exc))
        if col_save.button("Save Provider", type="primary", use_container_width=True):
            try:
                save_session(upsert_provider(session, draft))
                st.success("Provider saved.")
                st.rerun()
            except ConfigError as exc:
                st.error(str(exc))

        if st.button("Save as New Provider", use_container_width=True):
            try:
                save_session(upsert_provider(session, replace(draft, id="")))
                st.rerun()
            except ConfigError as exc:
                st.error(str(exc))

    if current is not None and st.button("Remove Active Provider", use_container_width=True):
        save_session(remove_provider(session, current.id))
        st.rerun()


def render_history_panel() -> None:
    repository = get_history_repository()
    stats = repository.stats()
    st.caption(
        f"{stats['total_diagrams']} / {stats['max_capacity']} saved ({stats['usage_percentage']:.0f}%)"
    )
    search = st.text_input("Search", key="history_search")
    sort_by = st.radio("Sort", ["timestamp", "title"], horizontal=True, key="history_sort")
    records = repository.list_history(limit=50, search=search, sort_by=sort_by)

    for record in records:
        with st.container(border=True):
            st.markdown(f"**{record['title']}**")
            st.caption(f"{CHART_TYPES.get(record['chartType'], record['chartType'])} · {record['description']}")
            col_load, col_export, col_delete = st.columns(3)
            if col_load.button("Load", key=f"load_{record['id']}", use_container_width=True):
                diagram = repository.get_diagram(record["id"])
                if diagram is not None:
                    st.session_state.scene.replace(diagram.get("elements") or [])
                    set_code(diagram.get("code") or elements_to_code(diagram.get("elements") or []))
                    st.session_state.current_title = diagram.get("title") or "diagram"
                    st.session_state.flow_key_version += 1
                    st.rerun()
            col_export.download_button(
                "Export",
                data=repository.export_diagram_json(record["id"]),
                file_name=get_export_filename(record["title"], "json"),
                mime="application/json",
                key=f"export_{record['id']}",
                use_container_width=True,
            )
            if col_delete.button("Delete", key=f"delete_{record['id']}", use_container_width=True):
                repository.delete_diagram(record["id"])
                st.rerun()

    with st.expander("Import History Entry", expanded=False):
        uploaded = st.file_uploader("History JSON", type=["json"], key="history_import")
        if uploaded is not None and st.button("Import", use_container_width=True):
            try:
                repository.import_diagram_json(decode_upload(uploaded.getvalue()))
                st.rerun()
            except HistoryError as exc:
                st.error(str(exc))

    if records and st.button("Clear History", use_container_width=True):
        repository.clear_all()
        st.rerun()


def run_generation(user_input: str, chart_type: str, image_file) -> None:
    image = None
    if image_file is not None:
        try:
            image = validate_image_upload(image_file.name, image_file.getvalue(), image_file.type)
        except ImageUploadError as exc:
            st.error(str(exc))
            return

    pipeline = GenerationPipeline(
        get_runtime_client(),
        scene=st.session_state.scene,
        history=get_history_repository(),
    )
    live_code = st.empty()

    def on_update(code: str, scene: SceneState) -> None:
        live_code.code(code, language="json")

    with st.spinner("Generating..."):
        outcome = pipeline.run(user_input, chart_type, image=image, on_update=on_update)
    live_code.empty()

    if outcome.code:
        set_code(outcome.code)
    st.session_state.flow_key_version += 1
    if not outcome.ok:
        st.error(outcome.message)
        return

    st.session_state.last_fixes = [fix.to_dict() for fix in outcome.fixes]
    st.session_state.current_title = user_input[:30] or "diagram"
    st.success(f"Generated {len(outcome.elements)} element(s).")


def render_stats(elements: list) -> None:
    stats = calculate_diagram_stats(elements)
    c1, c2, c3 = st.columns(3)
    c1.metric("Elements", stats.total_elements)
    c2.metric("Overlaps", stats.overlap_count)
    c3.metric("Types", len(stats.by_type))
    if stats.by_type:
        st.caption(", ".join(f"{name}: {count}" for name, count in sorted(stats.by_type.items())))


st.set_page_config(page_title="Smart Excalidraw", layout="wide")
ensure_state()

with st.sidebar:
    render_provider_settings()
    st.markdown("### History")
    render_history_panel()

st.title("Smart Excalidraw")

chart_keys = list(CHART_TYPES.keys())
chart_type = st.selectbox("Chart Type", chart_keys, format_func=lambda key: CHART_TYPES[key])
user_input = st.text_area("Describe the diagram", height=140, key="user_input")
image_file = st.file_uploader("Reference image (optional)", type=["png", "jpg", "jpeg", "gif", "webp"])

if st.button("Generate", type="primary", use_container_width=True):
    if not (user_input.strip() or image_file is not None):
        st.warning("Enter a description or attach an image.")
    else:
        run_generation(user_input, chart_type, image_file)

scene: SceneState = st.session_state.scene

if "pending_editor_code" in st.session_state:
    st.session_state.code_editor = st.session_state.pop("pending_editor_code")

with st.expander("Code Editor", expanded=True):
    edited = st.text_area("Element JSON", height=320, key="code_editor")
    col_apply, col_optimize, col_clear = st.columns(3)
    if col_apply.button("Apply", use_container_width=True):
        result = scene.apply(edited)
        if result.ok:
            set_code(edited, sync_editor=False)
            st.session_state.flow_key_version += 1
        else:
            st.error(result.message)
    if col_optimize.button("Optimize Arrows", use_container_width=True):
        optimized, result = optimize_and_apply(scene, edited)
        if result.ok:
            set_code(optimized)
            st.session_state.flow_key_version += 1
            st.rerun()
        st.error(result.message)
    if col_clear.button("Clear", use_container_width=True):
        scene.clear()
        set_code("")
        st.rerun()

    last_error = scene.last_error
    if last_error is not None:
        st.caption(f"Last parse error: {last_error.message}")

with st.expander("Optimize", expanded=bool(scene.elements)):
    col_fix, col_layout = st.columns(2)
    if col_fix.button("Auto Fix", use_container_width=True, disabled=not scene.elements):
        fixed = auto_fix_diagram(scene.elements)
        st.session_state.last_fixes = [fix.to_dict() for fix in fixed.fixes]
        if fixed.has_issues:
            set_elements(fixed.elements)
            st.rerun()
        st.info("No issues found.")
    if col_layout.button("Layered Layout", use_container_width=True, disabled=not scene.elements):
        set_elements(arrange_layered_layout(scene.elements))
        st.rerun()

    palettes = list_color_palettes()
    palette_key = st.selectbox(
        "Palette",
        [palette.key for palette in palettes],
        format_func=lambda key: next(p.name for p in palettes if p.key == key),
    )
    if st.button("Apply Palette", use_container_width=True, disabled=not scene.elements):
        set_elements(apply_color_palette(scene.elements, palette_key))
        st.rerun()

    col_ai_layout, col_ai_color = st.columns(2)
    if col_ai_layout.button("AI Layout", use_container_width=True, disabled=not scene.elements):
        try:
            with st.spinner("Optimizing layout..."):
                set_elements(optimize_layout_with_ai(scene.elements, get_runtime_client()))
            st.rerun()
        except (OptimizationError, GenerationError, ConfigError) as exc:
            st.error(str(exc))
    if col_ai_color.button("AI Colors", use_container_width=True, disabled=not scene.elements):
        try:
            with st.spinner("Suggesting colors..."):
                scheme = suggest_color_scheme_with_ai(
                    scene.elements, st.session_state.get("user_input", ""), get_runtime_client()
                )
            st.session_state.color_reasoning = scheme.reasoning
            set_elements(apply_color_scheme(scene.elements, scheme))
            st.rerun()
        except (OptimizationError, GenerationError, ConfigError) as exc:
            st.error(str(exc))
    if st.session_state.color_reasoning:
        st.caption(st.session_state.color_reasoning)

    if st.session_state.last_fixes:
        st.markdown("#### Fixes")
        st.table(st.session_state.last_fixes)

render_stats(scene.elements)

with st.expander("Preview", expanded=True):
    if scene.elements:
        streamlit_flow(
            f"excalidraw_preview_{st.session_state.flow_key_version}",
            to_flow_state(scene.elements),
            fit_view=True,
            height=520,
        )
    else:
        st.caption("Generate or import a diagram to preview it.")

with st.expander("Import / Export", expanded=False):
    uploaded_scene = st.file_uploader(
        "Open scene file", type=[ext.lstrip(".") for ext in sorted(SUPPORTED_EXTENSIONS)]
    )
    if uploaded_scene is not None and st.button("Load Scene", use_container_width=True):
        try:
            set_elements(load_scene_text(decode_upload(uploaded_scene.getvalue())))
            st.session_state.current_title = Path(uploaded_scene.name).stem
            st.rerun()
        except ExtractionError as exc:
            st.error(str(exc))

    st.download_button(
        "Download .excalidraw",
        data=dump_scene_file(scene.elements),
        file_name=get_export_filename(st.session_state.current_title, "excalidraw"),
        mime="application/json",
        use_container_width=True,
        disabled=not scene.elements,
    )
