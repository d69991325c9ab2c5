"""Unit tests for the annotation renderer."""

import io

import pytest
from PIL import Image

from medflash.services import annotator
from medflash.services.annotator import annotate_card, badge_radius, render_annotation
from medflash.services.geometry import box_to_rect
from medflash.services.raster import ANNOTATION_QUALITY

LABEL_BOX = [100, 100, 200, 200]
STRUCTURE_BOX = [400, 400, 450, 450]


def _open(data):
    return Image.open(io.BytesIO(data))


def _is_red(pixel):
    r, g, b = pixel[:3]
    return r > 200 and g < 120 and b < 120


def _is_white(pixel):
    return min(pixel[:3]) > 230


def _near(image, x, y, predicate, radius=1):
    return any(
        predicate(image.getpixel((x + dx, y + dy)))
        for dx in range(-radius, radius + 1)
        for dy in range(-radius, radius + 1)
    )


class TestRenderAnnotation:
    """Tests for render_annotation function."""

    def test_pointer_dot_and_badge(self, sample_image_bytes):
        """Test the Thalamus example: line, dot and badge at the expected pixels."""
        data = render_annotation(sample_image_bytes, "image/png", LABEL_BOX, STRUCTURE_BOX, 1)
        image = _open(data).convert("RGB")

        assert image.size == (1000, 1000)
        # Pointer line between (150, 150) and (425, 425).
        assert _near(image, 300, 300, _is_red)
        assert _near(image, 380, 380, _is_red)
        # Dot at the structure center.
        assert _is_red(image.getpixel((425, 425)))
        # Badge body (radius 70) around the label center.
        assert _is_red(image.getpixel((200, 150)))
        assert _is_red(image.getpixel((150, 100)))
        # Index text is white inside the badge.
        assert any(
            _is_white(image.getpixel((x, y)))
            for x in range(130, 171)
            for y in range(125, 180)
        )
        # Untouched background.
        assert _is_white(image.getpixel((900, 100)))
        assert _is_white(image.getpixel((100, 900)))

    def test_badge_only_without_structure_box(self, sample_image_bytes):
        """Test no pointer is drawn when only the label box is known."""
        data = render_annotation(sample_image_bytes, "image/png", LABEL_BOX, None, 2)
        image = _open(data).convert("RGB")

        assert _is_red(image.getpixel((200, 150)))
        assert _is_white(image.getpixel((300, 300)))
        assert _is_white(image.getpixel((425, 425)))

    def test_badge_has_minimum_radius(self, sample_image_bytes):
        """Test tiny label boxes still get a legible 20px badge."""
        small_box = [100, 100, 105, 105]
        rect = box_to_rect(small_box, 1000, 1000)
        assert badge_radius(rect) == 20

        data = render_annotation(sample_image_bytes, "image/png", small_box, None, 1)
        image = _open(data).convert("RGB")
        cx, cy = rect.center
        assert _is_red(image.getpixel((int(cx) + 15, int(cy))))
        assert _is_white(image.getpixel((int(cx) + 40, int(cy))))

    def test_badge_radius_scales_with_label(self):
        """Test badge radius is 0.7 of the smaller label side."""
        rect = box_to_rect([100, 100, 300, 200], 1000, 1000)
        assert badge_radius(rect) == pytest.approx(70)

    def test_rendering_is_deterministic(self, sample_image_bytes):
        """Test identical inputs produce identical pixels."""
        first = render_annotation(sample_image_bytes, "image/png", LABEL_BOX, STRUCTURE_BOX, 7)
        second = render_annotation(sample_image_bytes, "image/png", LABEL_BOX, STRUCTURE_BOX, 7)

        assert first == second
        assert list(_open(first).getdata()) == list(_open(second).getdata())

    def test_missing_label_box_passes_through(self, sample_image_bytes):
        """Test the renderer never fails without a label box."""
        data = render_annotation(sample_image_bytes, "image/png", None, STRUCTURE_BOX, 1)
        image = _open(data).convert("RGB")

        assert image.size == (1000, 1000)
        assert image.getextrema() == ((255, 255), (255, 255), (255, 255))

    def test_output_keeps_input_media_type(self, make_image):
        """Test the annotated raster is encoded like the cleaned input."""
        jpeg = make_image(fmt="JPEG")
        assert _open(render_annotation(jpeg, "image/jpg", LABEL_BOX, None, 1)).format == "JPEG"

        png = make_image(fmt="PNG")
        assert _open(render_annotation(png, "image/png", LABEL_BOX, None, 1)).format == "PNG"

    def test_lossy_output_uses_annotation_quality(self, make_image, monkeypatch):
        """Test JPEG annotations are encoded at quality 92, not Pillow's default."""
        qualities = []
        real_encode = annotator.encode_image

        def recording_encode(image, mime_type, quality=None):
            qualities.append(quality)
            return real_encode(image, mime_type, quality)

        monkeypatch.setattr(annotator, "encode_image", recording_encode)
        render_annotation(make_image(fmt="JPEG"), "image/jpeg", LABEL_BOX, None, 1)
        render_annotation(make_image(fmt="JPEG"), "image/jpeg", None, None, 1)

        assert qualities == [ANNOTATION_QUALITY, ANNOTATION_QUALITY]
        assert ANNOTATION_QUALITY == 92

    def test_large_input_is_capped_before_drawing(self, make_image):
        """Test the 1200px cap applies and boxes follow the scaled canvas."""
        data = render_annotation(make_image((2400, 2400)), "image/png", LABEL_BOX, None, 1)
        image = _open(data).convert("RGB")

        assert image.size == (1200, 1200)
        # Label center is (180, 180) on the scaled canvas; radius is 84.
        assert _is_red(image.getpixel((250, 180)))
        assert _is_white(image.getpixel((300, 180)))

    def test_input_bytes_are_not_modified(self, sample_image_bytes):
        """Test rendering always produces a new raster."""
        original = bytes(sample_image_bytes)
        data = render_annotation(sample_image_bytes, "image/png", LABEL_BOX, STRUCTURE_BOX, 1)

        assert sample_image_bytes == original
        assert data != original

    def test_corrupt_base_raises(self):
        """Test an undecodable base raster is reported."""
        with pytest.raises(RuntimeError, match="Could not decode"):
            render_annotation(b"garbage", "image/png", LABEL_BOX, None, 1)


class TestAnnotateCard:
    """Tests for annotate_card function."""

    def test_annotate_card_returns_new_card(self, sample_card, sample_image_bytes):
        """Test the annotated copy carries the image and numbered front."""
        annotated = annotate_card(sample_card, sample_image_bytes, "image/png", 3)

        assert annotated is not sample_card
        assert annotated.id == sample_card.id
        assert annotated.front == "Identify structure #3."
        assert annotated.back == "Thalamus"
        assert annotated.image_mime_type == "image/png"
        assert _open(annotated.image).format == "PNG"
        assert sample_card.image is None
        assert sample_card.front == "Structure #1."

    def test_card_without_label_box_is_unchanged(self, sample_image_bytes):
        """Test cards without coordinates never acquire an image."""
        from medflash.models import Flashcard

        card = Flashcard(front="What is the thalamus?", back="A relay nucleus")
        result = annotate_card(card, sample_image_bytes, "image/png", 1)

        assert result is card
        assert result.image is None

    def test_unknown_media_type_is_reported_as_png(self, sample_card, sample_image_bytes):
        """Test the stored media type matches the bytes actually produced."""
        annotated = annotate_card(sample_card, sample_image_bytes, "image/bmp", 1)

        assert annotated.image_mime_type == "image/png"
        assert _open(annotated.image).format == "PNG"
