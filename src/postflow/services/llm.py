import base64
import json
import logging

from google import genai
from google.genai import types

from postflow.config import GEMINI_MODEL, GOOGLE_API_KEY, IMAGEN_MODEL

logger = logging.getLogger(__name__)

_client: genai.Client | None = None


def _get_client() -> genai.Client:
    global _client
    if _client is None:
        if not GOOGLE_API_KEY:
            raise ValueError("GOOGLE_API_KEY is not set. Add it to your .env file.")
        _client = genai.Client(api_key=GOOGLE_API_KEY)
    return _client


def _contents(prompt: str, image_base64: str | None):
    if not image_base64:
        return prompt
    image_part = types.Part.from_bytes(
        data=base64.b64decode(image_base64),
        mime_type="image/png",
    )
    return [prompt, image_part]


async def generate(
    prompt: str,
    system_instruction: str = "",
    image_base64: str | None = None,
    json_mode: bool = False,
) -> str:
    client = _get_client()

    logger.info("Calling Gemini (%s)", GEMINI_MODEL)

    config = None
    if system_instruction or json_mode:
        config = types.GenerateContentConfig(
            system_instruction=system_instruction or None,
            response_mime_type="application/json" if json_mode else None,
        )

    response = await client.aio.models.generate_content(
        model=GEMINI_MODEL,
        contents=_contents(prompt, image_base64),
        config=config,
    )

    return response.text or ""


async def generate_grounded(prompt: str) -> tuple[str, list[dict]]:
    """Generate with Google Search grounding.

    Returns the model text and the web sources it was grounded on, as
    ``{"title", "uri"}`` dicts in the order the model cited them.
    """
    client = _get_client()

    logger.info("Calling Gemini (%s) with search grounding", GEMINI_MODEL)

    response = await client.aio.models.generate_content(
        model=GEMINI_MODEL,
        contents=prompt,
        config=types.GenerateContentConfig(
            tools=[types.Tool(google_search=types.GoogleSearch())],
        ),
    )

    return response.text or "", _grounding_sources(response)


def _grounding_sources(response) -> list[dict]:
    if not response.candidates:
        return []
    metadata = response.candidates[0].grounding_metadata
    if metadata is None or not metadata.grounding_chunks:
        return []

    sources = []
    for chunk in metadata.grounding_chunks:
        web = chunk.web
        if web is None or not web.uri:
            continue
        sources.append({"title": web.title or "", "uri": web.uri})
    return sources


async def generate_images(prompt: str, count: int = 1) -> list[str]:
    client = _get_client()

    logger.info("Calling Imagen (%s) for %d image(s)", IMAGEN_MODEL, count)

    response = await client.aio.models.generate_images(
        model=IMAGEN_MODEL,
        prompt=prompt,
        config=types.GenerateImagesConfig(number_of_images=count),
    )

    images = []
    for generated in response.generated_images or []:
        if generated.image is None or not generated.image.image_bytes:
            continue
        images.append(base64.b64encode(generated.image.image_bytes).decode("ascii"))
    return images


def extract_json(text: str) -> str:
    """Extract JSON from response, handling markdown fences and extra text."""
    cleaned = text.strip()

    # Remove markdown code fences
    if "```" in cleaned:
        parts = cleaned.split("```")
        for part in parts[1:]:
            candidate = part.strip()
            if candidate.startswith("json"):
                candidate = candidate[4:].strip()
            if candidate.startswith("{"):
                cleaned = candidate
                break

    # Find JSON object if there's extra text around it
    if not cleaned.startswith("{"):
        start = cleaned.find("{")
        if start != -1:
            depth = 0
            for i, c in enumerate(cleaned[start:], start):
                if c == "{":
                    depth += 1
                elif c == "}":
                    depth -= 1
                    if depth == 0:
                        cleaned = cleaned[start:i + 1]
                        break

    return cleaned


def parse_json(text: str) -> dict:
    data = json.loads(extract_json(text))
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data
