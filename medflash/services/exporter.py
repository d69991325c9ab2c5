import csv
import io
import logging
import time
import zipfile
from collections.abc import Sequence

from medflash import config
from medflash.models import (
    ContentKind,
    ExportArtifact,
    ExportFormat,
    Flashcard,
    MediaPlacement,
)
from medflash.services.raster import extension_for
from medflash.utils import export_basename, media_filename

logger = logging.getLogger(__name__)

CSV_BOM = "\ufeff"
LINE_BREAK = "<br>"
TSV_TAB_REPLACEMENT = "    "
NESTED_MEDIA_DIR = "media"
INSTRUCTIONS_FILENAME = "IMPORT_INSTRUCTIONS.txt"

SUFFIXES = {
    ExportFormat.CSV: "_anki_export.csv",
    ExportFormat.MOBILE_TEXT: "_mobile_import.txt",
    ExportFormat.MARKDOWN: "_notes.md",
    ExportFormat.ARCHIVE: "_anki_pack.zip",
}

INSTRUCTIONS_TEMPLATE = """\
MedFlash Anki Pack
==================

This pack contains {card_count} flashcards and {media_count} images.

Files:
  {tsv_name}  - the cards (tab-separated: Front, Back, Tags)
  {media_hint}

METHOD 1: Desktop (recommended)
  1. Unzip this archive.
  2. Copy every image file into your Anki "collection.media" folder
     (Anki > Tools > Check Media > View Files opens it).
  3. In Anki choose File > Import and select {tsv_name}.
  4. Set the field separator to Tab, tick "Allow HTML in fields",
     and map the columns to Front, Back and Tags.

METHOD 2: Direct import
  Import this .zip directly with an importer that accepts zipped
  text + media bundles (several mobile apps and add-ons do).

KNOWN ISSUE
  Some importers fail to resolve images stored inside archives and show
  a broken-image icon instead. If that happens, use Method 1 so the
  images sit in the collection media folder before the cards are imported.
"""


def _filename(source_filename: str, export_format: ExportFormat) -> str:
    return f"{export_basename(source_filename)}{SUFFIXES[export_format]}"


def _single_line(value: str) -> str:
    value = value.replace("\r\n", "\n").replace("\r", "\n")
    return value.replace("\n", LINE_BREAK)


def _tsv_field(value: str) -> str:
    return _single_line(value).replace("\t", TSV_TAB_REPLACEMENT)


def _tsv_record(front: str, back: str, tags: Sequence[str]) -> str:
    return "\t".join(_tsv_field(field) for field in (front, back, " ".join(tags)))


def to_csv(cards: Sequence[Flashcard]) -> str:
    """Front, back, tags; every field quoted, BOM-prefixed for spreadsheet tools."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for card in cards:
        writer.writerow([card.front, card.back, " ".join(card.tags)])
    # Records are separated, not terminated.
    return CSV_BOM + buf.getvalue().removesuffix("\n")


def to_mobile_text(cards: Sequence[Flashcard]) -> str:
    return "\n".join(_tsv_record(card.front, card.back, card.tags) for card in cards)


def to_markdown(cards: Sequence[Flashcard]) -> str:
    blocks = []
    for card in cards:
        tags = " ".join(f"#{tag}" for tag in card.tags if tag)
        tag_line = f"Tags: {tags}" if tags else "Tags:"
        blocks.append(
            f"## {_single_line(card.front)}\n\n"
            f"**Answer:** {card.back}\n\n"
            f"{tag_line}\n\n"
            "---\n"
        )
    return "\n".join(blocks)


class ArchiveBuilder:
    """Builds one zip bundle; construct a fresh builder per export."""

    def __init__(
        self,
        source_filename: str,
        placement: MediaPlacement = MediaPlacement.FLAT,
        timestamp_ms: int | None = None,
    ):
        self.basename = export_basename(source_filename)
        self.placement = MediaPlacement(placement)
        self.timestamp_ms = int(time.time() * 1000) if timestamp_ms is None else timestamp_ms

    @property
    def tsv_name(self) -> str:
        return f"{self.basename}_anki_import.txt"

    def _media_path(self, name: str) -> str:
        if self.placement is MediaPlacement.NESTED:
            return f"{NESTED_MEDIA_DIR}/{name}"
        return name

    def build(self, cards: Sequence[Flashcard]) -> bytes:
        records: list[str] = []
        media: dict[str, bytes] = {}

        for index, card in enumerate(cards, start=1):
            front = card.front
            if card.image:
                name = media_filename(
                    index,
                    self.timestamp_ms,
                    extension_for(card.image_mime_type or "image/png"),
                )
                path = self._media_path(name)
                media[path] = card.image
                front = f'{front}<br><img src="{path}">'
            records.append(_tsv_record(front, card.back, card.tags))

        instructions = INSTRUCTIONS_TEMPLATE.format(
            card_count=len(cards),
            media_count=len(media),
            tsv_name=self.tsv_name,
            media_hint=(
                f"{NESTED_MEDIA_DIR}/  - the card images"
                if self.placement is MediaPlacement.NESTED
                else "medflash_*  - the card images (kept next to the card file)"
            ),
        )

        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for path, data in media.items():
                archive.writestr(path, data)
            archive.writestr(INSTRUCTIONS_FILENAME, instructions)
            archive.writestr(self.tsv_name, "\n".join(records))

        logger.info(
            "Built archive with %d cards and %d media files (%s placement)",
            len(cards),
            len(media),
            self.placement.value,
        )
        return buf.getvalue()


def to_archive(
    cards: Sequence[Flashcard],
    source_filename: str,
    placement: MediaPlacement = MediaPlacement.FLAT,
    timestamp_ms: int | None = None,
) -> bytes:
    return ArchiveBuilder(source_filename, placement, timestamp_ms).build(cards)


def produce_export(
    cards: Sequence[Flashcard],
    source_filename: str,
    export_format: ExportFormat | str,
    media_placement: MediaPlacement | str | None = None,
) -> ExportArtifact:
    """Serialize `cards` into the requested format as an in-memory artifact."""
    try:
        export_format = ExportFormat(export_format)
    except ValueError as err:
        raise ValueError(f"Unsupported export format: {export_format!r}") from err

    filename = _filename(source_filename, export_format)

    if export_format is ExportFormat.CSV:
        content = to_csv(cards).encode("utf-8")
        kind, media_type = ContentKind.TEXT, "text/csv; charset=utf-8"
    elif export_format is ExportFormat.MOBILE_TEXT:
        content = to_mobile_text(cards).encode("utf-8")
        kind, media_type = ContentKind.TEXT, "text/plain; charset=utf-8"
    elif export_format is ExportFormat.MARKDOWN:
        content = to_markdown(cards).encode("utf-8")
        kind, media_type = ContentKind.MARKDOWN, "text/markdown; charset=utf-8"
    else:
        placement = MediaPlacement(media_placement or config.get_media_placement())
        content = to_archive(cards, source_filename, placement)
        kind, media_type = ContentKind.ARCHIVE, "application/zip"

    logger.info("Exported %d cards as %s (%s)", len(cards), export_format.value, filename)
    return ExportArtifact(content=content, filename=filename, content_kind=kind, media_type=media_type)
