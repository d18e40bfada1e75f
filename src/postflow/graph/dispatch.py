"""Per-kind stage handlers.

Each handler receives the stage, the context accumulated so far and the run
environment, and returns the context fields it owns plus the stage output.
Handlers never mutate the context they are given.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, NamedTuple

from postflow.config import (
    DEFAULT_IMAGE_COUNT,
    DEFAULT_LANGUAGE,
    DEFAULT_LENGTH,
    DEFAULT_PLATFORM,
    DEFAULT_TONE,
    MAX_IMAGE_COUNT,
)
from postflow.graph.errors import MissingContentError, NotAuthenticatedError, StageError
from postflow.graph.state import WorkflowContext, snapshot
from postflow.models.content import AuthSession, ComposedPost, PublishReceipt, ResearchResult
from postflow.models.workflow import EngineSettings, Stage, StageKind, WorkflowPlan

logger = logging.getLogger(__name__)

IMAGE_ONLY_BRIEF = "Generate content based on image"


@dataclass
class Collaborators:
    research: Callable[[str], Awaitable[ResearchResult]]
    compose: Callable[..., Awaitable[ComposedPost]]
    image: Callable[..., Awaitable[list[str]]]
    publish: Callable[[str, str, str | None], Awaitable[PublishReceipt]]
    plan_workflow: Callable[[str, bool], Awaitable[WorkflowPlan]] | None = None
    authenticate: Callable[..., Awaitable[AuthSession]] | None = None


@dataclass
class RunEnv:
    collaborators: Collaborators
    settings: EngineSettings


class StageOutcome(NamedTuple):
    updates: dict
    output: Any


Handler = Callable[[Stage, WorkflowContext, RunEnv], Awaitable[StageOutcome]]


async def run_input(stage: Stage, context: WorkflowContext, env: RunEnv) -> StageOutcome:
    topic = (stage.config.get("topic") or "").strip()
    reference_image = stage.config.get("reference_image") or None
    if not topic and not reference_image:
        raise StageError("Input empty", stage.id)

    updates: dict = {"topic": topic, "reference_image": reference_image}
    if stage.config.get("auth_token"):
        updates["auth_token"] = stage.config["auth_token"]
    return StageOutcome(updates, dict(updates))


async def run_research(stage: Stage, context: WorkflowContext, env: RunEnv) -> StageOutcome:
    topic = context.get("topic")
    if not topic:
        raise StageError("Missing topic", stage.id)

    result = await env.collaborators.research(topic)
    return StageOutcome({"research": result}, result)


def _compose_source(context: WorkflowContext) -> str | None:
    research = context.get("research")
    if research is not None and research.summary:
        return research.summary
    if context.get("topic"):
        return context["topic"]
    if context.get("reference_image"):
        return IMAGE_ONLY_BRIEF
    return None


async def run_compose(stage: Stage, context: WorkflowContext, env: RunEnv) -> StageOutcome:
    text = _compose_source(context)
    if text is None:
        raise StageError("Missing research summary and topic", stage.id)

    post = await env.collaborators.compose(
        text,
        stage.config.get("tone") or DEFAULT_TONE,
        stage.config.get("language") or DEFAULT_LANGUAGE,
        stage.config.get("length") or DEFAULT_LENGTH,
        context.get("reference_image"),
        stage.config.get("platform") or DEFAULT_PLATFORM,
    )
    return StageOutcome({"post": post}, post)


async def run_visual(stage: Stage, context: WorkflowContext, env: RunEnv) -> StageOutcome:
    post = context.get("post")
    prompt = (post.image_prompt if post is not None else "") or context.get("topic")
    if not prompt:
        raise StageError("Missing prompt", stage.id)

    count = stage.config.get("image_count")
    count = DEFAULT_IMAGE_COUNT if count is None else max(1, min(MAX_IMAGE_COUNT, int(count)))
    style = stage.config.get("image_style")
    reference_image = context.get("reference_image")

    images: list[str] = []
    last_error: Exception | None = None
    for i in range(count):
        try:
            generated = await env.collaborators.image(prompt, reference_image, 1, style)
        except Exception as e:
            last_error = e
            logger.warning("Image %d/%d failed: %s", i + 1, count, e)
        else:
            if generated:
                images.extend(generated)
            else:
                logger.warning("Image %d/%d returned no result", i + 1, count)

        if i < count - 1 and env.settings.image_delay:
            await asyncio.sleep(env.settings.image_delay)

    if not images:
        message = f"Image generation failed for all {count} request(s)"
        if last_error is not None:
            message = f"{message}: {last_error}"
        raise StageError(message, stage.id)

    if len(images) < count:
        logger.warning("Accepted %d of %d requested image(s)", len(images), count)

    return StageOutcome({"images": [*context.get("images", []), *images]}, images)


async def run_preview(stage: Stage, context: WorkflowContext, env: RunEnv) -> StageOutcome:
    if context.get("post") is None:
        logger.info("Preview has no content yet, awaiting content")
    return StageOutcome({}, snapshot(context))


async def run_publish(stage: Stage, context: WorkflowContext, env: RunEnv) -> StageOutcome:
    token = stage.config.get("auth_token") or context.get("auth_token")
    if not token:
        raise NotAuthenticatedError("Not authenticated with X", stage.id)

    post = context.get("post")
    if post is None:
        raise MissingContentError("No post content.", stage.id)

    images = context.get("images") or []
    receipt = await env.collaborators.publish(token, post.render(), images[0] if images else None)

    updates = {"auth_token": token} if not context.get("auth_token") else {}
    output = {
        **snapshot({**context, **updates}),
        "posted": True,
        "receipt": receipt.model_dump(),
    }
    return StageOutcome(updates, output)


async def run_output(stage: Stage, context: WorkflowContext, env: RunEnv) -> StageOutcome:
    return StageOutcome({}, snapshot(context))


HANDLERS: dict[StageKind, Handler] = {
    StageKind.INPUT: run_input,
    StageKind.RESEARCH: run_research,
    StageKind.COMPOSE: run_compose,
    StageKind.VISUAL: run_visual,
    StageKind.PREVIEW: run_preview,
    StageKind.PUBLISH: run_publish,
    StageKind.OUTPUT: run_output,
}

_missing = set(StageKind) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"No handler for stage kind(s): {sorted(k.value for k in _missing)}")


async def dispatch(stage: Stage, context: WorkflowContext, env: RunEnv) -> StageOutcome:
    return await HANDLERS[stage.kind](stage, context, env)
