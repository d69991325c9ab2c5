import io
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

INGEST_MAX_DIMENSION = 2500
ANNOTATION_MAX_DIMENSION = 1200
INGEST_JPEG_QUALITY = 85
ANNOTATION_QUALITY = 92
PDF_MIME_TYPE = "application/pdf"

_PIL_FORMATS = {
    "image/jpeg": ("JPEG", "jpg"),
    "image/png": ("PNG", "png"),
    "image/webp": ("WEBP", "webp"),
    "image/gif": ("GIF", "gif"),
}


def normalize_mime_type(mime_type: str) -> str:
    """Map loose image media types onto standard IANA names."""
    lower = (mime_type or "").strip().lower()
    if lower == "image/jpg" or "jpeg" in lower:
        return "image/jpeg"
    if lower in ("image/png", "image/webp", "image/gif"):
        return lower
    return mime_type


def is_pdf(mime_type: str, filename: str = "") -> bool:
    return mime_type == PDF_MIME_TYPE or filename.lower().endswith(".pdf")


def output_mime_type(mime_type: str) -> str:
    """Media type actually produced by encode_image for `mime_type`."""
    normalized = normalize_mime_type(mime_type)
    return normalized if normalized in _PIL_FORMATS else "image/png"


def extension_for(mime_type: str) -> str:
    return _PIL_FORMATS[output_mime_type(mime_type)][1]


def _fit_size(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    if width <= max_dimension and height <= max_dimension:
        return width, height
    ratio = min(max_dimension / width, max_dimension / height)
    return max(1, int(width * ratio)), max(1, int(height * ratio))


def load_canvas(data: bytes, max_dimension: int, mime_type: str = "image") -> Image.Image:
    """Decode raster bytes into an opaque RGB canvas no larger than max_dimension."""
    try:
        with Image.open(io.BytesIO(data)) as source:
            source = ImageOps.exif_transpose(source)
            source.load()
            rgba = source.convert("RGBA")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as err:
        raise RuntimeError(f"Could not decode {mime_type} data: {err}") from err

    size = _fit_size(rgba.width, rgba.height, max_dimension)
    if size != rgba.size:
        logger.info("Resizing raster from %sx%s to %sx%s", *rgba.size, *size)
        rgba = rgba.resize(size, Image.Resampling.LANCZOS)

    # Flatten onto white so transparent regions don't turn black in JPEG.
    canvas = Image.new("RGB", size, (255, 255, 255))
    canvas.paste(rgba, mask=rgba.getchannel("A"))
    return canvas


def encode_image(image: Image.Image, mime_type: str, quality: int | None = None) -> bytes:
    """Encode a canvas in the requested media type; unknown types become PNG."""
    pil_format, _ = _PIL_FORMATS.get(normalize_mime_type(mime_type), ("PNG", "png"))
    buf = io.BytesIO()
    params = {}
    if quality is not None and pil_format in ("JPEG", "WEBP"):
        params["quality"] = quality
    image.save(buf, format=pil_format, **params)
    return buf.getvalue()


def prepare_document(data: bytes, mime_type: str, filename: str = "") -> tuple[bytes, str]:
    """Normalize an upload for the AI collaborators.

    PDFs pass through untouched. Images are capped at 2500px, flattened and
    re-encoded as JPEG (quality 85).
    """
    if not data:
        raise RuntimeError(f"File {filename or '<upload>'} is empty.")

    if is_pdf(mime_type, filename):
        return data, PDF_MIME_TYPE

    canvas = load_canvas(data, INGEST_MAX_DIMENSION, mime_type or "image")
    return encode_image(canvas, "image/jpeg", quality=INGEST_JPEG_QUALITY), "image/jpeg"
