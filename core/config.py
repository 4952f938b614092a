"""
Retrieval Configuration

Dataclass-based settings for the retrieval engine, loadable from YAML.

Expected YAML structure (every key optional):

    embedding:
      provider: sentence_transformers   # sentence_transformers|ollama|openai|hashing
      model_name: all-MiniLM-L6-v2
      max_attempts: 3
    search:
      default_k: 5
      vector_weight: 0.7
      mmr_lambda: 0.5
    chunking:
      chunk_size: 800
      overlap: 100
    logging:
      level: INFO
      json_format: false

Usage:
    from core.config import load_config
    from core.logging_config import setup_logging

    config = load_config("config/retrieval.yaml")
    setup_logging(config.logging.level, config.logging.json_format)
    engine = create_search_engine(config)
"""

import os
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Optional, List, Dict, Any, Union

import yaml

from .errors import ConfigurationError

CONFIG_ENV_VAR = "RAGSEARCH_CONFIG"
LOG_LEVEL_ENV_VAR = "RAGSEARCH_LOG_LEVEL"
EMBED_PROVIDER_ENV_VAR = "RAGSEARCH_EMBED_PROVIDER"

VALID_PROVIDERS = ("sentence_transformers", "ollama", "openai", "hashing")
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class EmbeddingConfig:
    """Embedding provider settings."""
    provider: str = "sentence_transformers"
    model_name: Optional[str] = None  # provider default when unset
    base_url: str = "http://localhost:11434"
    api_key: Optional[str] = None
    timeout: float = 60.0
    batch_size: int = 32
    dimension: int = 256  # hashing provider only

    # Retry policy for embedding fetches
    max_attempts: int = 3
    retry_multiplier: float = 1.0
    retry_min_wait: float = 1.0
    retry_max_wait: float = 10.0


@dataclass
class SearchConfig:
    """Query defaults."""
    default_k: int = 5
    mmr_lambda: float = 0.5
    mmr_fetch_multiplier: int = 3
    hybrid_fetch_multiplier: int = 2
    vector_weight: float = 0.7
    parallel_subsearch: bool = True
    subsearch_timeout: Optional[float] = None


@dataclass
class ChunkingConfig:
    """Chunker settings."""
    chunk_size: int = 800
    overlap: int = 100


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    json_format: bool = False


@dataclass
class RetrievalConfig:
    """Top-level configuration for the retrieval engine."""
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'RetrievalConfig':
        """
        Build a config from a plain dictionary.

        Unknown sections or keys raise ConfigurationError so typos
        do not silently fall back to defaults.
        """
        data = data or {}
        sections = {
            "embedding": EmbeddingConfig,
            "search": SearchConfig,
            "chunking": ChunkingConfig,
            "logging": LoggingConfig,
        }

        unknown = set(data) - set(sections)
        if unknown:
            raise ConfigurationError(
                f"Unknown config sections: {', '.join(sorted(unknown))}"
            )

        kwargs = {}
        for name, section_cls in sections.items():
            section_data = data.get(name) or {}
            if not isinstance(section_data, dict):
                raise ConfigurationError(f"Config section '{name}' must be a mapping")

            allowed = {f.name for f in fields(section_cls)}
            bad_keys = set(section_data) - allowed
            if bad_keys:
                raise ConfigurationError(
                    f"Unknown keys in '{name}': {', '.join(sorted(bad_keys))}"
                )
            kwargs[name] = section_cls(**section_data)

        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> List[str]:
        """Validate configuration and return any issues."""
        issues = []

        if self.embedding.provider not in VALID_PROVIDERS:
            issues.append(f"Invalid embedding provider: {self.embedding.provider}")
        if self.embedding.max_attempts < 1:
            issues.append("embedding.max_attempts must be >= 1")
        if self.embedding.dimension < 1:
            issues.append("embedding.dimension must be >= 1")
        if self.embedding.retry_min_wait > self.embedding.retry_max_wait:
            issues.append("embedding.retry_min_wait must not exceed retry_max_wait")

        if self.search.default_k < 0:
            issues.append("search.default_k must be >= 0")
        if not 0.0 <= self.search.mmr_lambda <= 1.0:
            issues.append("search.mmr_lambda must be within [0, 1]")
        if not 0.0 <= self.search.vector_weight <= 1.0:
            issues.append("search.vector_weight must be within [0, 1]")
        if self.search.mmr_fetch_multiplier < 1:
            issues.append("search.mmr_fetch_multiplier must be >= 1")
        if self.search.hybrid_fetch_multiplier < 1:
            issues.append("search.hybrid_fetch_multiplier must be >= 1")
        if self.search.subsearch_timeout is not None and self.search.subsearch_timeout <= 0:
            issues.append("search.subsearch_timeout must be positive")

        if self.chunking.chunk_size < 1:
            issues.append("chunking.chunk_size must be >= 1")
        if not 0 <= self.chunking.overlap < self.chunking.chunk_size:
            issues.append("chunking.overlap must be within [0, chunk_size)")

        if self.logging.level.upper() not in VALID_LOG_LEVELS:
            issues.append(f"Invalid logging level: {self.logging.level}")

        return issues


def load_config(config_path: Optional[Union[str, Path]] = None) -> RetrievalConfig:
    """
    Load configuration from YAML.

    Args:
        config_path: Path to config YAML. Falls back to $RAGSEARCH_CONFIG,
                     then to built-in defaults.

    Returns:
        Validated RetrievalConfig

    Raises:
        ConfigurationError: Missing file, malformed YAML or invalid values
    """
    path = config_path or os.getenv(CONFIG_ENV_VAR)

    data: Dict[str, Any] = {}
    if path:
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}", path=str(path))

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Could not parse {path}: {e}", path=str(path)) from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config root must be a mapping: {path}", path=str(path))

    config = RetrievalConfig.from_dict(data)

    # Environment overrides
    level = os.getenv(LOG_LEVEL_ENV_VAR)
    if level:
        config.logging.level = level.upper()

    provider = os.getenv(EMBED_PROVIDER_ENV_VAR)
    if provider:
        config.embedding.provider = provider

    issues = config.validate()
    if issues:
        raise ConfigurationError(
            f"Invalid configuration: {'; '.join(issues)}",
            issues=issues
        )

    return config
