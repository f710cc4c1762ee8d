"""Companion memory configuration models."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import chardet
import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, model_validator


class StorageConfig(BaseModel):
    """Storage paths configuration."""

    sqlite_db_path: str = "./memory/companion_memory.db"

    @model_validator(mode="after")
    def _validate_paths(self) -> "StorageConfig":
        if self.sqlite_db_path == ":memory:":
            return self
        normalized = os.path.normpath(self.sqlite_db_path)
        parts = normalized.replace("\\", "/").split("/")
        if ".." in parts:
            raise ValueError(
                f"sqlite_db_path must not contain '..' components: "
                f"{self.sqlite_db_path!r}"
            )
        self.sqlite_db_path = normalized
        return self


class EmbeddingConfig(BaseModel):
    """Embedding model configuration."""

    model: str = "sentence-transformers/all-MiniLM-L6-v2"
    dimension: int = 384
    trust_remote_code: bool = False
    batch_size: int = 10  # facts embedded concurrently per batch


class ExtractionConfig(BaseModel):
    """Fact extraction configuration."""

    enabled: bool = True
    summary_min_length: int = 100  # combined user+reply chars before a summary fact
    max_summary_topics: int = 3


class RetrievalConfig(BaseModel):
    """Similarity retrieval configuration."""

    default_limit: int = 5
    context_similarity_floor: float = 0.7
    touch_on_retrieve: bool = True


class AgingConfig(BaseModel):
    """Decay, fuzziness and consolidation configuration."""

    enabled: bool = True
    short_term_decay_rate: float = 0.95  # per hour, first 24h
    medium_term_decay_rate: float = 0.98  # per day, up to 7 days
    long_term_decay_rate: float = 0.995  # per week afterwards
    archive_threshold: float = 0.3
    delete_threshold: float = 0.1
    consolidation_interval_hours: float = 6.0
    access_strength_bonus: float = 0.1
    max_access_bonus: float = 0.5
    importance_weight: float = 0.3
    fuzziness_factor: float = 0.1
    batch_size: int = 100

    @model_validator(mode="after")
    def _validate_thresholds(self) -> "AgingConfig":
        for name in (
            "short_term_decay_rate",
            "medium_term_decay_rate",
            "long_term_decay_rate",
        ):
            rate = getattr(self, name)
            if not 0.0 < rate <= 1.0:
                raise ValueError(f"{name} must be in (0, 1], got {rate}")
        if not 0.0 <= self.delete_threshold <= self.archive_threshold <= 1.0:
            raise ValueError(
                "thresholds must satisfy 0 <= delete_threshold <= "
                f"archive_threshold <= 1, got delete={self.delete_threshold} "
                f"archive={self.archive_threshold}"
            )
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        return self


class SharingConfig(BaseModel):
    """Shared memory network configuration."""

    enabled: bool = True
    min_relationship_strength: float = 0.6
    min_trust_level: float = 0.5
    auto_share_importance: float = 0.8
    auto_share_emotional_impact: float = 0.7
    auto_share_min_strength: float = 0.6
    cluster_min_significance: float = 0.1
    strong_connection_threshold: float = 0.8
    dominant_theme_min_memories: int = 3
    emotional_window_days: int = 30
    emotional_trend_threshold: float = 0.3


class MemoryConfig(BaseModel):
    """Top-level companion memory configuration."""

    enabled: bool = True
    storage: StorageConfig = Field(default_factory=StorageConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    aging: AgingConfig = Field(default_factory=AgingConfig)
    sharing: SharingConfig = Field(default_factory=SharingConfig)


_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")


def load_text_file_with_guess_encoding(file_path: str | Path) -> str | None:
    """Read a text file, trying common encodings before asking chardet.

    Returns:
        The file content, or None if no encoding could decode it
    """
    for encoding in ("utf-8", "utf-8-sig", "gbk", "cp936"):
        try:
            with open(file_path, "r", encoding=encoding) as file:
                return file.read()
        except UnicodeDecodeError:
            continue

    try:
        with open(file_path, "rb") as file:
            raw_data = file.read()
        detected = chardet.detect(raw_data)
        if detected["encoding"]:
            return raw_data.decode(detected["encoding"])
    except (OSError, UnicodeDecodeError, LookupError) as e:
        logger.error(f"Error detecting encoding for config file {file_path}: {e}")
    return None


def read_yaml(config_path: str | Path) -> dict[str, Any]:
    """Read a YAML file, substituting ``${VAR}`` with environment values.

    Variables from a ``.env`` file in the working directory are visible to
    the substitution. Unset variables are left as-is.

    Raises:
        FileNotFoundError: If the configuration file is not found.
        IOError: If the configuration file cannot be decoded.
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    content = load_text_file_with_guess_encoding(config_path)
    if content is None:
        raise IOError(f"Failed to read configuration file: {config_path}")

    load_dotenv()

    def replacer(match: re.Match) -> str:
        return os.getenv(match.group(1), match.group(0))

    content = _ENV_PATTERN.sub(replacer, content)

    try:
        return yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        logger.critical(f"Error parsing YAML file: {e}")
        raise


def _format_validation_error(error: ValidationError) -> str:
    lines = []
    for err in error.errors():
        location = " -> ".join(str(loc) for loc in err["loc"]) or "(root)"
        if err["type"] == "missing":
            lines.append(f"  - '{location}': required field is missing")
        else:
            lines.append(f"  - '{location}': {err['msg']} (got {err.get('input', 'N/A')!r})")
    return "\n".join(lines)


def load_memory_config(config_path: str | Path) -> MemoryConfig:
    """Load a :class:`MemoryConfig` from YAML.

    The memory settings may sit at the top level of the file or under a
    ``memory`` key.

    Raises:
        ValidationError: The settings do not validate; a readable summary
            is logged first
    """
    data = read_yaml(config_path)
    if "memory" in data and isinstance(data["memory"], dict):
        data = data["memory"]
    try:
        config = MemoryConfig.model_validate(data)
    except ValidationError as e:
        logger.critical(
            f"Memory configuration in {config_path} is invalid:\n"
            f"{_format_validation_error(e)}"
        )
        raise
    logger.info(f"Loaded memory config from {config_path}")
    return config
