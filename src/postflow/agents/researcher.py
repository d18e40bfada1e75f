import logging

from postflow.models.content import ResearchResult, Source
from postflow.services.llm import generate, generate_grounded

logger = logging.getLogger(__name__)


def _build_research_prompt(topic: str) -> str:
    return f"""Research for a startup organic marketing campaign about: "{topic}"

Return a CONCISE summary in bullet points (2-3 bullets per section):

**Trending Topics:**
- [Key trend 1]
- [Key trend 2]

**Audience Pain Points:**
- [Pain point 1]
- [Pain point 2]

**Content Opportunities:**
- [Opportunity 1]
- [Opportunity 2]

Keep it brief, actionable and focused. Max 150 words total."""


def _degraded_summary(topic: str) -> str:
    return (
        f"Live research was unavailable for \"{topic}\". "
        "Write from general knowledge of the topic and its audience."
    )


async def run_research(topic: str) -> ResearchResult:
    """Research a topic, falling back instead of failing.

    Grounded search first; if that fails, one ungrounded attempt; if that
    fails too, a degraded summary built from the topic alone.
    """
    prompt = _build_research_prompt(topic)

    try:
        text, sources = await generate_grounded(prompt)
        logger.info("Research for %r grounded on %d source(s)", topic, len(sources))
        return ResearchResult(
            summary=text,
            sources=[Source(**s) for s in sources],
            raw_text=text,
        )
    except Exception as e:
        logger.warning("Grounded research failed for %r, retrying without search: %s", topic, e)

    try:
        text = await generate(prompt)
        return ResearchResult(summary=text, raw_text=text)
    except Exception as e:
        logger.warning("Ungrounded research failed for %r, using degraded summary: %s", topic, e)

    return ResearchResult(summary=_degraded_summary(topic), degraded=True)
