"""
Tests for configuration loading and validation.
"""

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.config import (
    RetrievalConfig, EmbeddingConfig, SearchConfig, load_config,
    CONFIG_ENV_VAR, LOG_LEVEL_ENV_VAR, EMBED_PROVIDER_ENV_VAR
)
from core.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for var in (CONFIG_ENV_VAR, LOG_LEVEL_ENV_VAR, EMBED_PROVIDER_ENV_VAR):
        monkeypatch.delenv(var, raising=False)


class TestDefaults:
    """Tests for built-in defaults."""

    def test_defaults(self):
        """Built-in defaults are valid."""
        config = RetrievalConfig()

        assert config.embedding.provider == "sentence_transformers"
        assert config.embedding.max_attempts == 3
        assert config.search.default_k == 5
        assert config.search.mmr_fetch_multiplier == 3
        assert config.search.hybrid_fetch_multiplier == 2
        assert config.chunking.chunk_size == 800
        assert config.chunking.overlap == 100
        assert config.validate() == []

    def test_load_without_file(self):
        """Loading with no file gives the defaults."""
        config = load_config()
        assert config.to_dict() == RetrievalConfig().to_dict()


class TestFromDict:
    """Tests for dictionary parsing."""

    def test_partial_sections(self):
        """Missing keys and sections fall back to defaults."""
        config = RetrievalConfig.from_dict({"search": {"vector_weight": 0.4}})

        assert config.search.vector_weight == 0.4
        assert config.search.default_k == 5
        assert config.embedding == EmbeddingConfig()

    def test_unknown_section(self):
        """An unknown section is rejected."""
        with pytest.raises(ConfigurationError):
            RetrievalConfig.from_dict({"database": {}})

    def test_unknown_key(self):
        """An unknown key is rejected and named in the error."""
        with pytest.raises(ConfigurationError) as exc:
            RetrievalConfig.from_dict({"search": {"top_k": 3}})
        assert "top_k" in str(exc.value)

    def test_section_must_be_mapping(self):
        """A section that is not a mapping is rejected."""
        with pytest.raises(ConfigurationError):
            RetrievalConfig.from_dict({"search": [1, 2]})

    def test_round_trip(self):
        """to_dict output parses back to an equal config."""
        config = RetrievalConfig.from_dict({"embedding": {"provider": "ollama"}})
        assert RetrievalConfig.from_dict(config.to_dict()) == config


class TestValidate:
    """Tests for validation."""

    @pytest.mark.parametrize("data,fragment", [
        ({"embedding": {"provider": "word2vec"}}, "provider"),
        ({"embedding": {"max_attempts": 0}}, "max_attempts"),
        ({"search": {"vector_weight": 1.5}}, "vector_weight"),
        ({"search": {"mmr_lambda": -0.1}}, "mmr_lambda"),
        ({"search": {"default_k": -1}}, "default_k"),
        ({"search": {"subsearch_timeout": 0}}, "subsearch_timeout"),
        ({"chunking": {"chunk_size": 100, "overlap": 100}}, "overlap"),
        ({"logging": {"level": "LOUD"}}, "logging level"),
    ])
    def test_issues(self, data, fragment):
        """Out-of-range values are reported by validate()."""
        issues = RetrievalConfig.from_dict(data).validate()
        assert any(fragment in issue for issue in issues)


class TestLoadConfig:
    """Tests for YAML loading."""

    def test_load_yaml(self, tmp_path):
        """Values are read from a YAML file."""
        path = tmp_path / "retrieval.yaml"
        path.write_text(
            "embedding:\n"
            "  provider: hashing\n"
            "  dimension: 64\n"
            "search:\n"
            "  default_k: 3\n"
            "  parallel_subsearch: false\n"
        )

        config = load_config(path)

        assert config.embedding.provider == "hashing"
        assert config.embedding.dimension == 64
        assert config.search == SearchConfig(default_k=3, parallel_subsearch=False)

    def test_path_from_environment(self, tmp_path, monkeypatch):
        """The config path can come from the environment."""
        path = tmp_path / "env.yaml"
        path.write_text("search:\n  default_k: 9\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert load_config().search.default_k == 9

    def test_environment_overrides(self, tmp_path, monkeypatch):
        """Environment variables override file values."""
        path = tmp_path / "retrieval.yaml"
        path.write_text("embedding:\n  provider: ollama\n")
        monkeypatch.setenv(EMBED_PROVIDER_ENV_VAR, "hashing")
        monkeypatch.setenv(LOG_LEVEL_ENV_VAR, "debug")

        config = load_config(path)

        assert config.embedding.provider == "hashing"
        assert config.logging.level == "DEBUG"

    def test_empty_file(self, tmp_path):
        """An empty file gives the defaults."""
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path).search.default_k == 5

    def test_missing_file(self, tmp_path):
        """A missing file raises ConfigurationError."""
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "missing.yaml")

    def test_malformed_yaml(self, tmp_path):
        """Malformed YAML raises ConfigurationError."""
        path = tmp_path / "broken.yaml"
        path.write_text("search: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_non_mapping_root(self, tmp_path):
        """A YAML root that is not a mapping is rejected."""
        path = tmp_path / "list.yaml"
        path.write_text("- one\n- two\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_invalid_values(self, tmp_path):
        """Invalid values are reported with the list of issues."""
        path = tmp_path / "bad.yaml"
        path.write_text("search:\n  vector_weight: 2.0\n")
        with pytest.raises(ConfigurationError) as exc:
            load_config(path)
        assert exc.value.details["issues"]
