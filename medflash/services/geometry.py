import math
from collections.abc import Sequence

from medflash.models import PixelRect

PER_MILLE_SCALE = 1000.0
# Digits kept before floor/ceil so float noise cannot add a pixel.
_SNAP_DIGITS = 6


def _to_fraction(value: float) -> float:
    # Boxes arrive either as fractions or scaled by 1000; decided per component.
    value = float(value)
    if abs(value) > 1:
        return value / PER_MILLE_SCALE
    return value


def _snap(value: float) -> float:
    return round(value, _SNAP_DIGITS)


def box_to_rect(box: Sequence[float], width: int, height: int) -> PixelRect:
    """Map a [ymin, xmin, ymax, xmax] box onto a width x height canvas.

    The result always has at least 1px of extent; coordinates outside the
    canvas are returned as-is and left to the drawing surface to clip.
    """
    if len(box) != 4:
        raise ValueError(f"Expected a 4-component box, got {len(box)}: {list(box)!r}")

    ymin, xmin, ymax, xmax = (_to_fraction(v) for v in box)

    x = math.floor(_snap(xmin * width))
    y = math.floor(_snap(ymin * height))
    w = math.ceil(_snap(xmax * width - xmin * width))
    h = math.ceil(_snap(ymax * height - ymin * height))

    return PixelRect(x=x, y=y, w=max(1, w), h=max(1, h))
