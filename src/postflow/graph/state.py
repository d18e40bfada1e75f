from typing import TypedDict

from postflow.models.content import ComposedPost, ResearchResult


class WorkflowContext(TypedDict, total=False):
    # Seeded by INPUT (auth_token also by PUBLISH)
    topic: str
    reference_image: str | None
    auth_token: str | None
    # Stage outputs
    research: ResearchResult | None
    post: ComposedPost | None
    images: list[str]


def snapshot(context: WorkflowContext) -> dict:
    """Copy of the context safe to hand out as a stage output."""
    copied = dict(context)
    if "images" in copied:
        copied["images"] = list(copied["images"])
    return copied
