import asyncio
import logging
from enum import Enum

from medflash.models import ExportArtifact, ExportFormat, Flashcard, GenerationPreferences
from medflash.services.annotator import annotate_card
from medflash.services.exporter import produce_export
from medflash.services.gemini_client import generate_clean_plate, generate_flashcards
from medflash.services.raster import normalize_mime_type

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    IMAGE_ANNOTATING = "image_annotating"
    READY = "ready"
    DELIVERED = "delivered"
    FAILED = "failed"


async def _clean_plate_or_original(data: bytes, mime_type: str) -> tuple[bytes, str]:
    try:
        return await asyncio.to_thread(generate_clean_plate, data, mime_type)
    except Exception:
        logger.warning("Clean plate generation failed, falling back to the original image", exc_info=True)
        return data, mime_type


def _annotate_or_keep(card: Flashcard, base: bytes, mime_type: str, index: int) -> Flashcard:
    try:
        return annotate_card(card, base, mime_type, index)
    except Exception:
        logger.warning("Image processing failed for card %s", card.id, exc_info=True)
        return card


async def annotate_cards(cards: list[Flashcard], base: bytes, mime_type: str) -> list[Flashcard]:
    """Annotate every card with a label box concurrently, keeping generation order.

    Badge numbers are the 1-based generation positions.
    """
    tasks = []
    for index, card in enumerate(cards, start=1):
        if card.bounding_box is None:
            tasks.append(asyncio.sleep(0, result=card))
        else:
            tasks.append(asyncio.to_thread(_annotate_or_keep, card, base, mime_type, index))
    return list(await asyncio.gather(*tasks))


class ExportJob:
    """One document -> cards -> export run.

    idle -> generating -> (image_annotating) -> ready -> delivered
    """

    def __init__(self, data: bytes, mime_type: str, source_filename: str):
        self.data = data
        self.mime_type = normalize_mime_type(mime_type)
        self.source_filename = source_filename
        self.state = JobState.IDLE
        self.cards: list[Flashcard] = []

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    async def generate(self, prefs: GenerationPreferences) -> list[Flashcard]:
        if self.state is not JobState.IDLE:
            raise RuntimeError(f"Cannot generate from state {self.state.value}.")

        self.state = JobState.GENERATING
        logger.info("Generating %d cards for %s", prefs.card_count, self.source_filename)
        try:
            cards = await asyncio.to_thread(generate_flashcards, self.data, self.mime_type, prefs)
        except Exception:
            self.state = JobState.FAILED
            raise

        if self.is_image:
            self.state = JobState.IMAGE_ANNOTATING
            base, base_mime_type = await _clean_plate_or_original(self.data, self.mime_type)
            cards = await annotate_cards(cards, base, base_mime_type)

        self.cards = cards
        self.state = JobState.READY
        logger.info("Job for %s ready with %d cards", self.source_filename, len(cards))
        return cards

    def export(self, export_format: ExportFormat | str, media_placement=None) -> ExportArtifact:
        if self.state not in (JobState.READY, JobState.DELIVERED):
            raise RuntimeError(f"Cannot export from state {self.state.value}.")

        artifact = produce_export(self.cards, self.source_filename, export_format, media_placement)
        self.state = JobState.DELIVERED
        return artifact
