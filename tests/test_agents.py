import json

import pytest

from postflow.agents import illustrator, planner, researcher, writer
from postflow.models.workflow import StageKind
from postflow.services.llm import extract_json, parse_json


class ScriptedModel:
    """Stands in for services.llm.generate, replying from a script."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts = []

    async def __call__(self, prompt, system_instruction="", image_base64=None, json_mode=False):
        self.prompts.append((prompt, image_base64, json_mode))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


# --- JSON extraction ---


def test_extract_json_from_fenced_block():
    text = 'Here you go:\n```json\n{"content": "hi"}\n```\nEnjoy'
    assert json.loads(extract_json(text)) == {"content": "hi"}


def test_extract_json_from_surrounding_text():
    text = 'Sure! {"a": {"b": 1}} trailing'
    assert extract_json(text) == '{"a": {"b": 1}}'


def test_parse_json_rejects_arrays():
    with pytest.raises(ValueError):
        parse_json("[1, 2]")


# --- Planner ---


@pytest.mark.asyncio
async def test_plan_workflow_parses_stages_and_config(monkeypatch):
    model = ScriptedModel(json.dumps({
        "stages": ["RESEARCH", "WRITE", "IMAGE", "PREVIEW", "INPUT", "TELEPORT"],
        "config": {
            "writer": {"tone": "Founder Story", "language": "English", "length": "Short"},
            "image": {"style": "UGC Style", "count": 9},
        },
    }))
    monkeypatch.setattr(planner, "generate", model)

    plan = await planner.plan_workflow("launch post", has_reference_image=True)

    assert plan.enabled_kinds == {StageKind.RESEARCH, StageKind.COMPOSE, StageKind.VISUAL, StageKind.PREVIEW}
    assert plan.writer.tone == "Founder Story"
    assert plan.image.count == 4
    assert "(User has attached a reference image)" in model.prompts[0][0]
    assert model.prompts[0][2] is True


@pytest.mark.asyncio
async def test_plan_workflow_accepts_legacy_modules_key(monkeypatch):
    monkeypatch.setattr(planner, "generate", ScriptedModel('{"modules": ["SEARCH", "PUBLISHER"], "config": {}}'))

    plan = await planner.plan_workflow("news")

    assert plan.enabled_kinds == {StageKind.RESEARCH, StageKind.PUBLISH}
    assert plan.image.count is None


@pytest.mark.asyncio
async def test_plan_workflow_rejects_garbage(monkeypatch):
    monkeypatch.setattr(planner, "generate", ScriptedModel("not json at all"))
    with pytest.raises(ValueError, match="Failed to plan workflow"):
        await planner.plan_workflow("news")


# --- Writer ---


@pytest.mark.asyncio
async def test_writer_parses_post_and_normalizes_hashtags(monkeypatch):
    model = ScriptedModel('{"content": "Hello", "hashtags": ["ai", "#startup"], "imagePrompt": "desk"}')
    monkeypatch.setattr(writer, "generate", model)

    post = await writer.run_writer("ctx", "Founder Story", "English", "Short", reference_image="aW1n")

    assert post.text == "Hello"
    assert post.hashtags == ["#ai", "#startup"]
    assert post.image_prompt == "desk"
    assert model.prompts[0][1] == "aW1n"
    assert "Share the authentic founder journey" in model.prompts[0][0]


@pytest.mark.asyncio
async def test_writer_retries_once_on_unparsable_output(monkeypatch):
    model = ScriptedModel("oops", '{"content": "Second try", "hashtags": []}')
    monkeypatch.setattr(writer, "generate", model)

    post = await writer.run_writer("ctx", "tone", "English", "Short")

    assert post.text == "Second try"
    assert len(model.prompts) == 2


@pytest.mark.asyncio
async def test_writer_gives_up_after_retry(monkeypatch):
    monkeypatch.setattr(writer, "generate", ScriptedModel("oops", '{"hashtags": []}'))
    with pytest.raises(ValueError, match="Could not parse generated post"):
        await writer.run_writer("ctx", "tone", "English", "Short")


@pytest.mark.asyncio
async def test_writer_does_not_swallow_upstream_errors(monkeypatch):
    monkeypatch.setattr(writer, "generate", ScriptedModel(RuntimeError("429 quota")))
    with pytest.raises(RuntimeError):
        await writer.run_writer("ctx", "tone", "English", "Short")


# --- Researcher ---


@pytest.mark.asyncio
async def test_research_uses_grounded_sources(monkeypatch):
    async def grounded(prompt):
        return "summary", [{"title": "A", "uri": "https://a"}, {"title": "", "uri": "https://b"}]

    monkeypatch.setattr(researcher, "generate_grounded", grounded)

    result = await researcher.run_research("ai")

    assert result.summary == "summary"
    assert [s.uri for s in result.sources] == ["https://a", "https://b"]
    assert result.degraded is False


@pytest.mark.asyncio
async def test_research_falls_back_to_ungrounded(monkeypatch):
    async def grounded(prompt):
        raise RuntimeError("search tool unavailable")

    monkeypatch.setattr(researcher, "generate_grounded", grounded)
    monkeypatch.setattr(researcher, "generate", ScriptedModel("plain summary"))

    result = await researcher.run_research("ai")

    assert result.summary == "plain summary"
    assert result.sources == []


@pytest.mark.asyncio
async def test_research_degrades_instead_of_failing(monkeypatch):
    async def grounded(prompt):
        raise RuntimeError("down")

    monkeypatch.setattr(researcher, "generate_grounded", grounded)
    monkeypatch.setattr(researcher, "generate", ScriptedModel(RuntimeError("still down")))

    result = await researcher.run_research("ai")

    assert result.degraded is True
    assert "ai" in result.summary


# --- Illustrator ---


@pytest.mark.asyncio
async def test_illustrator_builds_styled_prompt(monkeypatch):
    seen = {}

    async def fake_images(prompt, count=1):
        seen["prompt"] = prompt
        seen["count"] = count
        return ["b64"]

    monkeypatch.setattr(illustrator, "generate_images", fake_images)

    images = await illustrator.run_illustrator("a desk", reference_image="aW1n", count=1, style="UGC Style")

    assert images == ["b64"]
    assert seen["count"] == 1
    assert "Style: UGC Style" in seen["prompt"]
    assert "reference photo" in seen["prompt"]
