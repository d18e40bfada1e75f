import asyncio
import base64
import logging

import streamlit as st

from postflow.agents.publisher import LoopbackPrompt
from postflow.config import X_CALLBACK_URL
from postflow.graph.errors import AuthenticationError, InputValidationError
from postflow.graph.registry import StageRegistry
from postflow.graph.workflow import Sequencer
from postflow.models.workflow import EventKind, StageKind, StageStatus

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

st.set_page_config(
    page_title="PostFlow",
    page_icon="⚡",
    layout="centered",
)

st.title("PostFlow")
st.caption("Describe what you want to post. PostFlow plans the pipeline, writes it, illustrates it and publishes it.")

st.divider()


# --- Helpers ---


def get_registry() -> StageRegistry:
    if "registry" not in st.session_state:
        st.session_state["registry"] = StageRegistry()
    return st.session_state["registry"]


@st.cache_resource
def get_sequencer() -> Sequencer:
    return Sequencer()


STATUS_ICONS = {
    StageStatus.IDLE: "⚪",
    StageStatus.RUNNING: "🔄",
    StageStatus.COMPLETED: "✅",
    StageStatus.ERROR: "❌",
}


registry = get_registry()
sequencer = get_sequencer()
input_stage = registry.find(StageKind.INPUT)

# --- Input ---
topic = st.text_area(
    "What should the post be about?",
    value=input_stage.config.get("topic", ""),
    placeholder="AI tools for startups",
)
image_file = st.file_uploader("Reference image (optional)", type=["png", "jpg", "jpeg"])

reference_image = None
if image_file is not None:
    reference_image = base64.b64encode(image_file.read()).decode("ascii")

registry.update_config(input_stage.id, {"topic": topic, "reference_image": reference_image})

col_plan, col_reset = st.columns(2)
with col_plan:
    if st.button("Plan workflow", use_container_width=True):
        if not topic and not reference_image:
            st.error("Enter a topic or attach an image first.")
        else:
            try:
                asyncio.run(sequencer.plan(registry, topic))
                st.info(f'Workflow configured for "{topic[:20]}..."')
            except Exception as e:
                logging.getLogger(__name__).exception("Auto-plan failed")
                st.error(f"Failed to plan workflow. Please try again. ({e})")
with col_reset:
    if st.button("Reset", use_container_width=True):
        registry.reset()
        st.rerun()

# --- Stages ---
with st.expander("Pipeline", expanded=True):
    for stage in registry:
        label = f"{STATUS_ICONS[stage.status]} {stage.kind.value.title()}"
        enabled = st.toggle(label, value=stage.enabled, disabled=stage.mandatory, key=f"toggle_{stage.id}")
        if enabled != stage.enabled:
            registry.toggle(stage.id)

        if stage.kind == StageKind.COMPOSE and stage.enabled:
            tone = st.text_input("Tone", value=stage.config.get("tone", ""), key="cfg_tone")
            language = st.text_input("Language", value=stage.config.get("language", ""), key="cfg_language")
            registry.update_config(stage.id, {"tone": tone, "language": language})
        elif stage.kind == StageKind.VISUAL and stage.enabled:
            count = st.slider("Images", 1, 4, int(stage.config.get("image_count", 3)), key="cfg_count")
            registry.update_config(stage.id, {"image_count": count})
        elif stage.kind == StageKind.PUBLISH and stage.enabled:
            profile = stage.config.get("auth_profile")
            if profile:
                st.caption(f"Connected as @{profile['username']}")
            elif st.button("Connect X account"):

                async def present(url: str) -> LoopbackPrompt:
                    return await LoopbackPrompt.open(url, X_CALLBACK_URL)

                try:
                    session = asyncio.run(sequencer.authenticate(registry, present))
                    st.success(f"Connected as @{session.profile.username}")
                except (AuthenticationError, ValueError) as e:
                    st.error(f"X Login Failed: {e}")

    st.caption(" → ".join(stage.kind.value for stage in registry.active_order()))

st.divider()


async def run_with_progress(status) -> None:
    handle = sequencer.start(registry)
    async for event in handle.events():
        if event.kind == EventKind.STAGE_STATUS:
            icon = STATUS_ICONS[event.status]
            detail = f": {event.message}" if event.message else ""
            status.write(f"{icon} {event.stage_id} {event.status.value.lower()}{detail}")
        elif event.kind == EventKind.RUN_SUCCEEDED:
            status.update(label=event.message, state="complete")
        else:
            status.update(label="Pipeline failed", state="error")
            st.error(event.message)
    registry.record(handle.result.stages)
    st.session_state["last_result"] = handle.result


# --- Run ---
if st.button("Run", type="primary", use_container_width=True):
    try:
        with st.status("Running workflow...", expanded=True) as status:
            asyncio.run(run_with_progress(status))
    except InputValidationError as e:
        st.error(str(e))

# --- Results ---
result = st.session_state.get("last_result")
if result is not None and result.context:
    context = result.context
    st.subheader("Result")

    research = context.get("research")
    if research is not None:
        with st.expander("Research"):
            st.markdown(research.summary)
            for source in research.sources:
                st.markdown(f"- [{source.title or source.uri}]({source.uri})")

    post = context.get("post")
    if post is not None:
        st.markdown(post.text)
        st.caption(" ".join(post.hashtags))

    images = context.get("images") or []
    if images:
        cols = st.columns(min(len(images), 4))
        for i, image in enumerate(images):
            with cols[i % len(cols)]:
                st.image(base64.b64decode(image))

    publish_stage = next((s for s in result.stages if s.kind == StageKind.PUBLISH), None)
    if publish_stage is not None and publish_stage.output and publish_stage.output.get("posted"):
        st.success(f"Posted: {publish_stage.output['receipt']['url']}")
