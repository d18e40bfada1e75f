import json
import logging

from postflow.config import DEFAULT_PLATFORM
from postflow.models.content import ComposedPost
from postflow.services.llm import generate, parse_json

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = """You create organic social media content for a STARTUP trying to grow through authentic marketing.

Key rules:
- Be authentic and human, not corporate or salesy.
- Focus on value to the audience, not just promotion.
- Use conversational language that builds connection.
- Include specific details, examples or data when relevant.
- Make it shareable and engaging.
- Avoid marketing buzzwords and corporate jargon.

IMPORTANT: Respond ONLY with valid JSON, no extra text or markdown.
"""

TONE_GUIDES = {
    "Problem-Solution": "Identify a specific pain point your audience faces, then present your product/service as the solution. Be empathetic and results-focused.",
    "Founder Story": "Share the authentic founder journey, challenges overcome, why you built this, and lessons learned. Be vulnerable and human.",
    "Customer Success": "Highlight real customer results, testimonials, transformation stories. Use specific metrics and genuine quotes when possible.",
    "Educational / How-to": "Teach your audience something valuable related to your industry. Build authority and trust through helpful content.",
    "Behind-the-Scenes": "Show the real work, team culture, product development process. Give an exclusive peek into how things are made.",
    "Thought Leadership": "Share unique insights, industry trends, or hot takes. Position as an expert with a distinct point of view.",
    "Community-First": "Celebrate your users, ask questions, start meaningful conversations. Make it about them, not you.",
    "Product Updates": "Announce new features, improvements, or roadmap teasers. Focus on benefits and value to users.",
}


def _build_post_prompt(
    context: str,
    tone: str,
    platform: str,
    language: str,
    length: str,
    has_image: bool,
) -> str:
    image_section = ""
    if has_image:
        image_section = """
## REFERENCE IMAGE:
An image is attached. Ground the post in what it shows.
"""

    return f"""Write one {platform} post.

## BRIEF:
- Context: {context}
- Platform: {platform}
- Language: {language}
- Content strategy: {TONE_GUIDES.get(tone, tone)}
- Target length: {length}
{image_section}
## RESPONSE FORMAT (JSON):
{{
    "content": "The {platform} post text, optimized for organic reach",
    "hashtags": ["3-5 relevant, non-generic hashtags"],
    "imagePrompt": "Detailed description for a compelling visual that supports the message"
}}"""


def _parse_post_response(response: str) -> ComposedPost:
    data = parse_json(response)

    text = data.get("content") or data.get("text")
    if not text:
        raise KeyError("content")

    hashtags = data.get("hashtags") or []
    if isinstance(hashtags, str):
        hashtags = hashtags.split()
    hashtags = [tag if tag.startswith("#") else f"#{tag}" for tag in map(str, hashtags) if tag]

    return ComposedPost(
        text=text,
        hashtags=hashtags,
        image_prompt=data.get("imagePrompt") or data.get("image_prompt") or "",
    )


async def run_writer(
    text: str,
    tone: str,
    language: str,
    length: str,
    reference_image: str | None = None,
    platform: str = DEFAULT_PLATFORM,
) -> ComposedPost:
    logger.info(
        "Composing %s post (%s, %s, %s, image=%s)",
        platform, tone, language, length, bool(reference_image),
    )

    prompt = _build_post_prompt(text, tone, platform, language, length, bool(reference_image))

    # Retry once on parse failure
    last_error: Exception | None = None
    for attempt in range(2):
        response = await generate(
            prompt,
            system_instruction=SYSTEM_INSTRUCTION,
            image_base64=reference_image,
            json_mode=True,
        )
        try:
            return _parse_post_response(response)
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            last_error = e
            if attempt == 0:
                logger.warning("Failed to parse post (attempt 1), retrying: %s", e)
            else:
                logger.error("Failed to parse post after retry: %s", e)

    raise ValueError(f"Could not parse generated post: {last_error}")
