import json
import logging

from postflow.config import MAX_IMAGE_COUNT
from postflow.models.content import ImagePlan, WriterPlan
from postflow.models.workflow import MANDATORY_KINDS, StageKind, WorkflowPlan
from postflow.services.llm import generate, parse_json

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = """You are an AI workflow orchestrator for a startup organic marketing tool.
The tool helps startups create authentic social media content to grow their audience organically.

IMPORTANT: Respond ONLY with valid JSON, no extra text or markdown.
"""

# Names the model sometimes answers with instead of the stage kinds.
_KIND_ALIASES = {
    "SEARCH": StageKind.RESEARCH,
    "WRITE": StageKind.COMPOSE,
    "WRITER": StageKind.COMPOSE,
    "IMAGE": StageKind.VISUAL,
    "PUBLISHER": StageKind.PUBLISH,
}


def _build_plan_prompt(intent: str) -> str:
    return f"""User intent: "{intent}"

## AVAILABLE STAGES:
- RESEARCH: research trending topics, competitor content and audience interests
- COMPOSE: write authentic social media content with a startup-friendly tone
- VISUAL: create compelling visuals (product shots, team photos, infographics)
- PREVIEW: preview how the post will look on social media
- PUBLISH: publish to the connected X account

## TASK:
1. Decide which stages the intent needs.
2. Configure COMPOSE:
   - tone: one of "Problem-Solution", "Founder Story", "Customer Success",
     "Educational / How-to", "Behind-the-Scenes", "Thought Leadership",
     "Community-First", "Product Updates"
   - language: the language the intent is written in
   - length: "Short", "Medium" or "Long"
3. Configure VISUAL:
   - style: one of "Product in Action", "Founder/Team Spotlight", "Customer Story",
     "Behind-the-Scenes", "Problem-Solution Visual", "Minimal Product Focus",
     "UGC Style", "Data/Results Driven"
   - count: number of image variations (1-{MAX_IMAGE_COUNT})

## RESPONSE FORMAT (JSON):
{{
    "stages": ["RESEARCH", "COMPOSE", "VISUAL", "PREVIEW"],
    "config": {{
        "writer": {{"tone": "...", "language": "...", "length": "..."}},
        "image": {{"style": "...", "count": 2}}
    }}
}}"""


def _parse_kind(name) -> StageKind | None:
    key = str(name).strip().upper()
    if key in _KIND_ALIASES:
        return _KIND_ALIASES[key]
    try:
        return StageKind(key)
    except ValueError:
        logger.warning("Planner returned unknown stage %r, ignoring", name)
        return None


def _parse_plan_response(response: str) -> WorkflowPlan:
    data = parse_json(response)

    names = data.get("stages") or data.get("modules") or []
    kinds = {kind for kind in map(_parse_kind, names) if kind is not None}
    kinds -= MANDATORY_KINDS

    config = data.get("config") or {}
    writer = config.get("writer") or {}
    image = config.get("image") or {}

    count = image.get("count")
    if count is not None:
        count = max(1, min(MAX_IMAGE_COUNT, int(count)))

    return WorkflowPlan(
        enabled_kinds=kinds,
        writer=WriterPlan(
            tone=writer.get("tone"),
            language=writer.get("language"),
            length=writer.get("length"),
        ),
        image=ImagePlan(style=image.get("style"), count=count),
    )


async def plan_workflow(intent: str, has_reference_image: bool = False) -> WorkflowPlan:
    planning_intent = intent
    if has_reference_image:
        planning_intent = f"{intent} (User has attached a reference image)"

    logger.info("Planning workflow for intent: %.60s", planning_intent)

    response = await generate(
        _build_plan_prompt(planning_intent),
        system_instruction=SYSTEM_INSTRUCTION,
        json_mode=True,
    )

    try:
        plan = _parse_plan_response(response)
    except (json.JSONDecodeError, ValueError, TypeError) as e:
        raise ValueError(f"Failed to plan workflow: {e}") from e

    logger.info("Planned stages: %s", sorted(kind.value for kind in plan.enabled_kinds))
    return plan
