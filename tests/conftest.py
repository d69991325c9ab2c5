"""Pytest configuration and shared fixtures."""

import io
import json
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from medflash.models import Flashcard


def make_image_bytes(size=(1000, 1000), color="white", fmt="PNG", mode="RGB"):
    img = Image.new(mode, size, color=color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def gemini_response(payload=None, text=None, parts=None):
    """Build a fake google-genai response object."""
    response = Mock()
    response.text = text if text is not None else json.dumps(payload)
    if parts is None:
        response.candidates = []
    else:
        response.candidates = [Mock(content=Mock(parts=parts))]
    return response


@pytest.fixture(autouse=True)
def set_test_env(monkeypatch, tmp_path):
    """Set test environment variables for all tests."""
    monkeypatch.setenv("GEMINI_API_KEY", "test-gemini-key")
    monkeypatch.setenv("MEDFLASH_CONFIG_PATH", str(tmp_path / "config.json"))
    monkeypatch.delenv("MEDFLASH_MEDIA_PLACEMENT", raising=False)


@pytest.fixture
def sample_card():
    """The diagram card used throughout the annotation tests."""
    return Flashcard(
        id="card-1",
        front="Structure #1.",
        back="Thalamus",
        tags=["neuro", "anatomy"],
        bounding_box=[100, 100, 200, 200],
        structure_bounding_box=[400, 400, 450, 450],
    )


@pytest.fixture
def sample_cards():
    """Text cards with markup that needs escaping in every export format."""
    return [
        Flashcard(
            id="card-a",
            front='He said "go"\nthen left',
            back="CO<sub>2</sub> retention\tcauses acidosis",
            tags=["resp", "acid-base"],
        ),
        Flashcard(
            id="card-b",
            front="Na<sup>+</sup>/K<sup>+</sup> ATPase ratio?",
            back="3 Na⁺ out, 2 K⁺ in",
            tags=["physio"],
        ),
    ]


@pytest.fixture
def sample_image_bytes():
    """Plain white 1000x1000 PNG."""
    return make_image_bytes()


@pytest.fixture
def mock_gemini_client(monkeypatch):
    """Mock the google-genai client used by gemini_client."""
    mock_client = Mock()
    mock_genai = Mock()
    mock_genai.Client.return_value = mock_client
    monkeypatch.setattr("medflash.services.gemini_client.genai", mock_genai)
    return mock_client


@pytest.fixture
def test_client():
    """FastAPI TestClient for integration tests."""
    from medflash.main import app

    return TestClient(app)


@pytest.fixture
def make_image():
    """Factory for encoded test images."""
    return make_image_bytes


@pytest.fixture
def make_gemini_response():
    """Factory for fake google-genai responses."""
    return gemini_response
