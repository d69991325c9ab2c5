"""Unit tests for the config layer."""

import json

from medflash import config


class TestConfig:
    """Tests for config file and environment resolution."""

    def test_defaults_without_file(self, monkeypatch):
        """Test built-in defaults apply when nothing is configured."""
        monkeypatch.delenv("MEDFLASH_GENERATION_MODEL", raising=False)

        assert config.get_model("generation") == "gemini-2.5-flash"
        assert config.get_model("image") == "gemini-2.5-flash-image"
        assert config.get_media_placement() == "flat"

    def test_env_var_fallback(self, monkeypatch):
        """Test env vars fill in values left at their defaults."""
        monkeypatch.setenv("MEDFLASH_IMAGE_MODEL", "gemini-3-pro-image")
        monkeypatch.setenv("MEDFLASH_MEDIA_PLACEMENT", "nested")

        assert config.get_model("image") == "gemini-3-pro-image"
        assert config.get_media_placement() == "nested"
        assert config.get_gemini_api_key() == "test-gemini-key"

    def test_file_value_wins_over_env(self, monkeypatch):
        """Test a stored value takes priority over the environment."""
        monkeypatch.setenv("MEDFLASH_ANALYSIS_MODEL", "from-env")
        config.update({"analysis_model": "from-file"})

        assert config.get_model("analysis") == "from-file"

    def test_update_persists_to_config_path(self, tmp_path):
        """Test updates are written to MEDFLASH_CONFIG_PATH."""
        config.update({"generation_model": "gemini-2.5-pro", "gemini_api_key": "secret"})

        with open(tmp_path / "config.json", encoding="utf-8") as f:
            stored = json.load(f)
        assert stored["generation_model"] == "gemini-2.5-pro"
        assert stored["gemini_api_key"] == "secret"
        assert config.get_gemini_api_key() == "secret"

    def test_empty_api_key_keeps_existing(self):
        """Test an empty key in an update does not erase the stored key."""
        config.update({"gemini_api_key": "secret"})
        config.update({"gemini_api_key": "", "image_model": "other-image-model"})

        assert config.get_gemini_api_key() == "secret"
        assert config.get_model("image") == "other-image-model"

    def test_get_all_masks_api_key(self):
        """Test the API key is never returned."""
        config.update({"gemini_api_key": "secret"})
        cfg = config.get_all()

        assert cfg["gemini_api_key"] == ""
        assert cfg["gemini_api_key_set"] is True

    def test_get_all_reports_missing_key(self, monkeypatch):
        """Test gemini_api_key_set is false when no key exists anywhere."""
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)

        assert config.get_all()["gemini_api_key_set"] is False
