import logging

from postflow.services.llm import generate_images

logger = logging.getLogger(__name__)

DEFAULT_STYLE = "Product in Action"


def _build_image_prompt(prompt: str, style: str | None, has_reference: bool) -> str:
    reference_line = ""
    if has_reference:
        reference_line = "- Keep the subject consistent with the user's reference photo\n"

    return f"""{prompt}

Style: {style or DEFAULT_STYLE}

Guidelines for startup organic marketing visuals:
- Authentic and real, not stock photo aesthetic
- Relatable and human-centric
- Clear value proposition shown visually
- Social media optimized (attention-grabbing)
- Professional but approachable
{reference_line}- Avoid corporate/stuffy vibes"""


async def run_illustrator(
    prompt: str,
    reference_image: str | None = None,
    count: int = 1,
    style: str | None = None,
) -> list[str]:
    logger.info("Generating %d image(s), style=%s", count, style or DEFAULT_STYLE)
    images = await generate_images(_build_image_prompt(prompt, style, bool(reference_image)), count)
    if len(images) < count:
        logger.warning("Requested %d image(s), got %d", count, len(images))
    return images
