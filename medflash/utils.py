import re
from urllib.parse import quote

_EXTENSION_RE = re.compile(r"\.[^/.]+$")
_UNSAFE_HEADER_CHARS_RE = re.compile(r"[^\x20-\x7e]|[\"\\]")


def export_basename(filename: str) -> str:
    """Strip the final extension from a source document name.

    Args:
        filename: The uploaded document name (e.g. 'brain.png')

    Returns:
        The name without its extension, e.g. 'brain'
    """
    return _EXTENSION_RE.sub("", filename or "") or "flashcards"


def media_filename(index: int, timestamp_ms: int, extension: str) -> str:
    """Build an archive media name unique per card within one export."""
    return f"medflash_{index}_{timestamp_ms}.{extension}"


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1]
        cleaned = cleaned.rsplit("```", 1)[0].strip()
    return cleaned


def content_disposition(filename: str) -> str:
    """Build an attachment header value that survives non-ASCII filenames.

    Plain `filename` gets an ASCII-only fallback; `filename*` carries the
    exact UTF-8 name (RFC 5987).
    """
    fallback = _UNSAFE_HEADER_CHARS_RE.sub("_", filename)
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"
