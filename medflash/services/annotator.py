import logging
from collections.abc import Sequence

from PIL import Image, ImageDraw, ImageFilter, ImageFont

from medflash.models import Flashcard, PixelRect
from medflash.services.geometry import box_to_rect
from medflash.services.raster import (
    ANNOTATION_MAX_DIMENSION,
    ANNOTATION_QUALITY,
    encode_image,
    load_canvas,
    normalize_mime_type,
    output_mime_type,
)

logger = logging.getLogger(__name__)

ACCENT_COLOR = (239, 68, 68)  # #ef4444
BADGE_TEXT_COLOR = (255, 255, 255)
POINTER_WIDTH = 2
POINTER_DOT_RADIUS = 4
BADGE_MIN_RADIUS = 20
BADGE_BOX_RATIO = 0.7
BADGE_OUTLINE_WIDTH = 3
SHADOW_OFFSET = (0, 2)
SHADOW_BLUR = 2
SHADOW_ALPHA = 128

_FONT_NAMES = ("DejaVuSans-Bold.ttf", "Arial Bold.ttf", "arialbd.ttf", "FreeSansBold.ttf")


def _get_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    for font_name in _FONT_NAMES:
        try:
            return ImageFont.truetype(font_name, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def badge_radius(label: PixelRect) -> float:
    return max(BADGE_MIN_RADIUS, min(label.w, label.h) * BADGE_BOX_RATIO)


def _circle(cx: float, cy: float, r: float) -> list[float]:
    return [cx - r, cy - r, cx + r, cy + r]


def _draw_pointer(draw: ImageDraw.ImageDraw, start: tuple[float, float], end: tuple[float, float]):
    draw.line([start, end], fill=ACCENT_COLOR, width=POINTER_WIDTH)
    draw.ellipse(_circle(*end, POINTER_DOT_RADIUS), fill=ACCENT_COLOR)


def _draw_badge(canvas: Image.Image, center: tuple[float, float], radius: float, index: int) -> Image.Image:
    cx, cy = center

    shadow = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    ImageDraw.Draw(shadow).ellipse(
        _circle(cx + SHADOW_OFFSET[0], cy + SHADOW_OFFSET[1], radius),
        fill=(0, 0, 0, SHADOW_ALPHA),
    )
    shadow = shadow.filter(ImageFilter.GaussianBlur(SHADOW_BLUR))
    composed = Image.alpha_composite(canvas.convert("RGBA"), shadow).convert("RGB")

    draw = ImageDraw.Draw(composed)
    draw.ellipse(
        _circle(cx, cy, radius),
        fill=ACCENT_COLOR,
        outline=BADGE_TEXT_COLOR,
        width=BADGE_OUTLINE_WIDTH,
    )

    label = str(index)
    font = _get_font(max(1, round(radius * 1.1)))
    left, top, right, bottom = draw.textbbox((0, 0), label, font=font)
    text_x = cx - (left + right) / 2
    text_y = cy + radius * 0.1 - (top + bottom) / 2
    draw.text((text_x, text_y), label, fill=BADGE_TEXT_COLOR, font=font)
    return composed


def render_annotation(
    image_bytes: bytes,
    mime_type: str,
    label_box: Sequence[float] | None,
    structure_box: Sequence[float] | None = None,
    index: int = 1,
) -> bytes:
    """Draw the numbered badge (and pointer, when a structure box is given).

    Returns a newly encoded raster in `mime_type`; the input bytes are
    never modified. Without a label box the image is returned unannotated.
    """
    mime_type = normalize_mime_type(mime_type)
    canvas = load_canvas(image_bytes, ANNOTATION_MAX_DIMENSION, mime_type)

    if label_box is None:
        return encode_image(canvas, mime_type, quality=ANNOTATION_QUALITY)

    width, height = canvas.size
    label = box_to_rect(label_box, width, height)
    label_center = label.center

    if structure_box is not None:
        structure = box_to_rect(structure_box, width, height)
        _draw_pointer(ImageDraw.Draw(canvas), label_center, structure.center)

    canvas = _draw_badge(canvas, label_center, badge_radius(label), index)
    return encode_image(canvas, mime_type, quality=ANNOTATION_QUALITY)


def annotate_card(card: Flashcard, cleaned_image_bytes: bytes, mime_type: str, index: int) -> Flashcard:
    """Return a copy of `card` carrying its annotated image and numbered front."""
    if card.bounding_box is None:
        return card

    image = render_annotation(
        cleaned_image_bytes,
        mime_type,
        card.bounding_box,
        card.structure_bounding_box,
        index,
    )
    logger.info("Annotated card %s as structure #%d", card.id, index)
    return card.model_copy(
        update={
            "front": f"Identify structure #{index}.",
            "image": image,
            "image_mime_type": output_mime_type(mime_type),
        }
    )
