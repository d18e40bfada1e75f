import pytest

from postflow.graph.dispatch import Collaborators
from postflow.graph.registry import StageRegistry
from postflow.models.content import ComposedPost, PublishReceipt, ResearchResult, Source
from postflow.models.workflow import EngineSettings


class FakeCollaborators:
    """Records every call and returns canned results.

    ``image_results`` is consumed one entry per image call; an Exception
    instance in it is raised instead of returned.
    """

    def __init__(self, image_results=None, publish_error=None):
        self.calls: list[tuple] = []
        self.research_result = ResearchResult(
            summary="X",
            sources=[
                Source(title="One", uri="https://example.com/1"),
                Source(title="Two", uri="https://example.com/2"),
            ],
        )
        self.post = ComposedPost(
            text="Startups ship faster with AI.",
            hashtags=["#ai", "#startup"],
            image_prompt="founders at a whiteboard",
        )
        self.image_results = list(image_results) if image_results is not None else None
        self.publish_error = publish_error

    async def research(self, topic):
        self.calls.append(("research", topic))
        return self.research_result

    async def compose(self, text, tone, language, length, reference_image=None, platform="Twitter"):
        self.calls.append(("compose", text, tone, language, length, reference_image, platform))
        return self.post

    async def image(self, prompt, reference_image=None, count=1, style=None):
        index = sum(1 for call in self.calls if call[0] == "image")
        self.calls.append(("image", prompt, reference_image, count, style))
        if self.image_results is None:
            return [f"img-{index}"]
        result = self.image_results[index]
        if isinstance(result, Exception):
            raise result
        return result

    async def publish(self, token, text, image=None):
        self.calls.append(("publish", token, text, image))
        if self.publish_error is not None:
            raise self.publish_error
        return PublishReceipt(external_id="123", url="https://twitter.com/i/web/status/123")

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def bundle(self) -> Collaborators:
        return Collaborators(
            research=self.research,
            compose=self.compose,
            image=self.image,
            publish=self.publish,
        )


@pytest.fixture
def fakes():
    return FakeCollaborators()


@pytest.fixture
def settings():
    return EngineSettings(stage_delay=0, image_delay=0, auth_timeout=1)


@pytest.fixture
def registry():
    reg = StageRegistry()
    reg.update_config("input", {"topic": "AI tools for startups"})
    return reg


def enable(registry: StageRegistry, *stage_ids: str) -> StageRegistry:
    for stage_id in stage_ids:
        if not registry.get(stage_id).enabled:
            registry.toggle(stage_id)
    return registry
