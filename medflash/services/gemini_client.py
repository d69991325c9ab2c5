import json
import logging
import time

from google import genai
from google.genai import types
from pydantic import ValidationError

from medflash import config
from medflash.models import DocumentAnalysis, Flashcard, GenerationPreferences
from medflash.services.raster import normalize_mime_type
from medflash.utils import strip_code_fences

logger = logging.getLogger(__name__)

DEFAULT_ANALYSIS = DocumentAnalysis(
    language="English",
    topic="General Medicine",
    suggested_count=30,
    reasoning="Analysis failed, using defaults.",
    has_images=False,
    image_count_estimate="0",
)

ANALYSIS_PROMPT = (
    "Analyze this medical file. Identify the language and main clinical/scientific topic. "
    "Report if it contains diagrams or is an image itself. "
    "Estimate the optimal number of flashcards needed (range 10-100)."
)

CLEAN_PLATE_PROMPT = """
You are a specialized Medical Image Editor.

TASK: Remove text labels to create a "Fill-in-the-blank" study image.

STRICT RULES:
1. OUTPUT THE EXACT SAME IMAGE LAYOUT. Do not crop, resize, or hallucinate new layouts.
2. PRESERVE ALL ANATOMY. Do not remove organs, tissues, or inset diagrams.
3. PRESERVE LINES WHERE POSSIBLE. Try to keep the thin leader lines.
4. REMOVE TEXT. Inpaint the text characters with the background color.

If a text label overlaps a line, it is acceptable to erase the part of the line touching the text,
but try to leave the rest of the line. Pointers are redrawn afterwards, so prioritize clean text removal.
"""

_STRING = types.Schema(type=types.Type.STRING)
_BOX = types.Schema(
    type=types.Type.ARRAY,
    items=types.Schema(type=types.Type.NUMBER),
    description="Coordinates [ymin, xmin, ymax, xmax].",
)

ANALYSIS_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "language": types.Schema(type=types.Type.STRING, description="Primary language of the document"),
        "topic": types.Schema(type=types.Type.STRING, description="Main medical topic"),
        "suggested_count": types.Schema(
            type=types.Type.INTEGER,
            description="Recommended number of cards based on information density (10-100)",
        ),
        "reasoning": types.Schema(type=types.Type.STRING, description="Short explanation for the count."),
        "has_images": types.Schema(
            type=types.Type.BOOLEAN,
            description="True if the document contains diagrams or is itself an image.",
        ),
        "image_count_estimate": types.Schema(
            type=types.Type.STRING,
            description="Estimated number of images found (e.g. '5', '10-20', '1').",
        ),
    },
    required=["language", "topic", "suggested_count", "reasoning", "has_images", "image_count_estimate"],
)

FLASHCARDS_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "flashcards": types.Schema(
            type=types.Type.ARRAY,
            description="A list of generated flashcards.",
            items=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "front": types.Schema(type=types.Type.STRING, description="Question or placeholder"),
                    "back": types.Schema(type=types.Type.STRING, description="Answer and explanation"),
                    "tags": types.Schema(type=types.Type.ARRAY, items=_STRING),
                    "bounding_box": _BOX,
                    "structure_bounding_box": _BOX,
                },
                required=["front", "back", "tags"],
            ),
        )
    },
    required=["flashcards"],
)


def _client() -> genai.Client:
    api_key = config.get_gemini_api_key()
    if not api_key:
        raise RuntimeError("GEMINI_API_KEY is required.")
    return genai.Client(api_key=api_key)


def _parse_json(content: str, what: str):
    try:
        return json.loads(strip_code_fences(content))
    except json.JSONDecodeError as err:
        raise RuntimeError(f"Gemini returned invalid {what} JSON: {err}\nRaw: {content}") from err


def _system_instruction(is_image: bool, prefs: GenerationPreferences) -> str:
    if is_image:
        task = (
            "**TASK: IDENTIFY FLASHCARD TARGETS**\n"
            f"- Identify the {prefs.card_count} most clinically relevant anatomical structures "
            "labeled in the image.\n"
            "- For each target, provide TWO bounding boxes:\n"
            "  1. 'bounding_box': the box around the TEXT LABEL.\n"
            "  2. 'structure_bounding_box': the box around the ANATOMICAL STRUCTURE it points to.\n"
            "Use [ymin, xmin, ymax, xmax] scaled to 0-1000.\n\n"
            "**FLASHCARD CONTENT**:\n"
            '- Front: "Structure #?" (placeholder)\n'
            "- Back: name of the structure and a high-yield clinical fact."
        )
    else:
        task = (
            "DOCUMENT INSTRUCTIONS:\n"
            f"- Extract about {prefs.card_count} high-yield {prefs.exam_type} concepts.\n"
            "- Create professional Anki cards. Use <sub>/<sup> for sub- and superscripts."
        )
        if prefs.detailed_context:
            task += "\n- Add a short clinical context or mechanism to every answer."

    return (
        "You are a specialized Medical Education AI.\n\n"
        f"CONTEXT: The input is {'a MEDICAL DIAGRAM' if is_image else 'a medical document'}.\n\n"
        f"{task}\n\n"
        f"LANGUAGE: {prefs.language}."
    )


def analyze_document(data: bytes, mime_type: str) -> DocumentAnalysis:
    """Ask Gemini for language, topic and a recommended card count.

    A failed API call falls back to DEFAULT_ANALYSIS; a response missing
    required fields is an error.
    """
    client = _client()
    safe_mime_type = normalize_mime_type(mime_type)

    try:
        response = client.models.generate_content(
            model=config.get_model("analysis"),
            contents=[types.Part.from_bytes(data=data, mime_type=safe_mime_type), ANALYSIS_PROMPT],
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=ANALYSIS_SCHEMA,
            ),
        )
    except Exception:
        logger.warning("Document analysis failed, using defaults", exc_info=True)
        return DEFAULT_ANALYSIS

    content = (response.text or "").strip()
    logger.info("Gemini analysis response: %s", content)
    if not content:
        raise RuntimeError("Analysis failed: no content returned.")

    parsed = _parse_json(content, "analysis")
    try:
        return DocumentAnalysis.model_validate(parsed)
    except ValidationError as err:
        raise RuntimeError(f"Gemini analysis is missing required fields: {err}") from err


def generate_flashcards(data: bytes, mime_type: str, prefs: GenerationPreferences) -> list[Flashcard]:
    """Generate ordered card drafts; any malformed entry fails the whole batch."""
    client = _client()
    safe_mime_type = normalize_mime_type(mime_type)
    is_image = safe_mime_type.startswith("image/")

    response = client.models.generate_content(
        model=config.get_model("generation"),
        contents=[
            types.Part.from_bytes(data=data, mime_type=safe_mime_type),
            f"Generate flashcards for {prefs.exam_type}. Focus: {prefs.focus_area}. "
            f"Language: {prefs.language}.",
        ],
        config=types.GenerateContentConfig(
            system_instruction=_system_instruction(is_image, prefs),
            response_mime_type="application/json",
            response_schema=FLASHCARDS_SCHEMA,
        ),
    )

    content = (response.text or "").strip()
    logger.info("Gemini flashcards response: %s", content)
    if not content:
        raise RuntimeError("No content generated.")

    parsed = _parse_json(content, "flashcards")
    if not isinstance(parsed, dict) or not isinstance(parsed.get("flashcards"), list):
        raise RuntimeError(f"Gemini response has no 'flashcards' list: {content}")

    stamp = int(time.time() * 1000)
    cards: list[Flashcard] = []
    for index, draft in enumerate(parsed["flashcards"]):
        if not isinstance(draft, dict):
            raise RuntimeError(f"Flashcard draft {index} is not an object: {draft!r}")
        try:
            cards.append(
                Flashcard(
                    id=f"card-{stamp}-{index}",
                    front=draft.get("front"),
                    back=draft.get("back"),
                    tags=draft.get("tags") or [],
                    bounding_box=draft.get("bounding_box") or draft.get("boundingBox"),
                    structure_bounding_box=(
                        draft.get("structure_bounding_box") or draft.get("structureBoundingBox")
                    ),
                )
            )
        except ValidationError as err:
            raise RuntimeError(f"Flashcard draft {index} is malformed: {err}") from err

    if not cards:
        raise RuntimeError(f"No flashcards generated.\nGemini response: {content}")

    return cards


def generate_clean_plate(data: bytes, mime_type: str) -> tuple[bytes, str]:
    """Ask Gemini to erase text labels; raises RuntimeError when no image comes back."""
    client = _client()
    safe_mime_type = normalize_mime_type(mime_type)

    response = client.models.generate_content(
        model=config.get_model("image"),
        contents=[types.Part.from_bytes(data=data, mime_type=safe_mime_type), CLEAN_PLATE_PROMPT],
        config=types.GenerateContentConfig(temperature=0.0),
    )

    candidate = response.candidates[0] if response.candidates else None
    parts = candidate.content.parts if candidate and candidate.content else None
    for part in parts or []:
        inline = part.inline_data
        if inline is not None and inline.data:
            return inline.data, inline.mime_type or "image/png"

    raise RuntimeError("Gemini did not return a clean plate image.")
