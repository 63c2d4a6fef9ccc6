"""Unit tests for Settings validation and the YAML configuration loader."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from artist_resolver.config.loader import load_config, load_settings
from artist_resolver.config.settings import Settings
from artist_resolver.models.artist import AliasTier
from artist_resolver.utils.errors import ConfigurationError
from tests.conftest import make_settings


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path) -> None:
    """Run every test away from any developer .env file."""
    monkeypatch.chdir(tmp_path)
    for name in ("MIN_CONFIDENCE", "FANOUT_MODE", "STORE_BACKEND", "SPOTIFY_ACCESS_TOKEN"):
        monkeypatch.delenv(name, raising=False)


def _write(path: Path, text: str) -> str:
    path.write_text(text, encoding="utf-8")
    return str(path)


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.min_confidence == 0.7
        assert settings.authority_priority == ["musicbrainz", "discogs", "spotify", "isni"]
        assert settings.fanout_mode == "all_complete"
        assert settings.tier_weights() == {
            AliasTier.PRIMARY: 1.0,
            AliasTier.CREDITED: 0.9,
            AliasTier.OTHER: 0.8,
        }

    def test_rate_limit_lookup(self) -> None:
        settings = make_settings(spotify_rate_limit=25.0)
        assert settings.rate_limit_for("spotify") == 25.0
        assert settings.rate_limit_for("tidal") == 1.0

    def test_priority_is_cleaned(self) -> None:
        settings = make_settings(authority_priority=[" MusicBrainz", "discogs", ""])
        assert settings.authority_priority == ["musicbrainz", "discogs"]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"min_confidence": 1.5},
            {"tier_weight_other": -0.1},
            {"fanout_mode": "race"},
            {"store_backend": "postgres"},
            {"authority_priority": []},
            {"authority_priority": ["discogs", "Discogs"]},
            {"breaker_failure_threshold": 0},
            {"breaker_backoff_multiplier": 0.5},
        ],
    )
    def test_invalid_values_rejected(self, overrides) -> None:
        with pytest.raises(ValidationError):
            make_settings(**overrides)

    def test_environment_override(self, monkeypatch) -> None:
        monkeypatch.setenv("MIN_CONFIDENCE", "0.9")
        assert Settings(_env_file=None).min_confidence == 0.9


class TestLoader:
    def test_missing_file_gives_defaults(self, tmp_path) -> None:
        settings = load_settings(str(tmp_path / "absent.yaml"))
        assert settings.min_confidence == 0.7

    def test_sections_are_flattened(self, tmp_path) -> None:
        path = _write(
            tmp_path / "config.yaml",
            "matching:\n"
            "  min_confidence: 0.8\n"
            "  authority_priority: [discogs, musicbrainz]\n"
            "orchestration:\n"
            "  fanout_mode: first_confident\n"
            "unrelated:\n"
            "  not_a_setting: 1\n",
        )
        settings = load_settings(path)
        assert settings.min_confidence == 0.8
        assert settings.authority_priority == ["discogs", "musicbrainz"]
        assert settings.fanout_mode == "first_confident"

    def test_environment_wins_over_yaml(self, tmp_path, monkeypatch) -> None:
        path = _write(tmp_path / "config.yaml", "matching:\n  min_confidence: 0.8\n")
        monkeypatch.setenv("MIN_CONFIDENCE", "0.95")

        config = load_config(path)
        assert config["environment"]["min_confidence"] == 0.95
        assert load_settings(path).min_confidence == 0.95

    def test_invalid_yaml_value_is_configuration_error(self, tmp_path) -> None:
        path = _write(tmp_path / "config.yaml", "matching:\n  min_confidence: 3\n")
        with pytest.raises(ConfigurationError):
            load_settings(path)

    def test_non_mapping_is_configuration_error(self, tmp_path) -> None:
        path = _write(tmp_path / "config.yaml", "- just\n- a list\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_invalid_environment_is_configuration_error(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("FANOUT_MODE", "sometimes")
        with pytest.raises(ConfigurationError):
            load_config(str(tmp_path / "absent.yaml"))

    def test_repository_config_loads(self, project_root) -> None:
        settings = load_settings(str(project_root / "config" / "config.yaml"))
        assert settings.authority_priority[0] == "musicbrainz"
        assert settings.store_backend == "memory"
        assert settings.spotify_rate_limit == 10.0
