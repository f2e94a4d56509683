"""
Unit Tests for Settings
"""

from pathlib import Path

import pytest

from taskhive.config import load_settings
from taskhive.errors import ValidationError
from taskhive.service import build_service


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("TASKHIVE_CONFIG", "TASKHIVE_DATA_DIR", "TASKHIVE_LOG_LEVEL", "TASKHIVE_REVIEW_CACHE_TTL"):
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    """Test defaults, YAML and environment layering."""

    def test_defaults(self):
        settings = load_settings()
        assert settings.data_dir == Path("data/taskhive")
        assert settings.log_level == "INFO"
        assert settings.review_cache_ttl == 0
        assert settings.changelog_file == Path("data/taskhive/changelogs.jsonl")

    def test_yaml_file(self, tmp_path):
        config = tmp_path / "taskhive.yaml"
        config.write_text("data_dir: /srv/taskhive\nlog_level: debug\nreview_cache_ttl: 15\n")
        settings = load_settings(config)
        assert settings.data_dir == Path("/srv/taskhive")
        assert settings.log_level == "DEBUG"
        assert settings.review_cache_ttl == 15.0

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        config = tmp_path / "taskhive.yaml"
        config.write_text("data_dir: /srv/taskhive\n")
        monkeypatch.setenv("TASKHIVE_CONFIG", str(config))
        monkeypatch.setenv("TASKHIVE_DATA_DIR", str(tmp_path / "override"))
        assert load_settings().entities_file == tmp_path / "override" / "entities.json"

    def test_missing_file_uses_defaults(self, tmp_path):
        assert load_settings(tmp_path / "absent.yaml").log_level == "INFO"

    def test_invalid_ttl(self, monkeypatch):
        monkeypatch.setenv("TASKHIVE_REVIEW_CACHE_TTL", "soon")
        with pytest.raises(ValidationError):
            load_settings()

    def test_non_mapping_yaml(self, tmp_path):
        config = tmp_path / "taskhive.yaml"
        config.write_text("- just\n- a list\n")
        with pytest.raises(ValidationError):
            load_settings(config)

    def test_build_service_enables_cache(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TASKHIVE_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("TASKHIVE_REVIEW_CACHE_TTL", "30")
        service = build_service(load_settings())
        assert service.review_cache is not None
        assert service.changelogs.log_file == tmp_path / "changelogs.jsonl"
