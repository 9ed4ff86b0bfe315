"""Configuration for codecontext, stored as TOML.

The file lives at ``$CODECONTEXT_HOME/config.toml`` (default
``~/.codecontext/config.toml``) and has two sections::

    [embeddings]
    provider = "openai"          # hash | openai | voyage
    model = "text-embedding-3-small"
    batch_size = 32
    batch_delay = 0.1

    [retrieval]
    min_similarity = 0.35
    default_token_budget = 2000
    high_confidence = 0.75
    graph_depth = 2              # fixed, whatever the query type

Every key is optional.  Fusion keys set under ``[retrieval]`` win over
the per-query strategy defaults.  A missing or unreadable file yields the defaults.
API keys are read from ``OPENAI_API_KEY`` / ``VOYAGE_API_KEY`` unless an
``api_key`` entry is present.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import toml

from .embeddings import REMOTE_PROVIDERS, EmbeddingConfig
from .ranking import FusionOptions

logger = logging.getLogger(__name__)

BASE_DIR = Path(os.environ.get("CODECONTEXT_HOME", str(Path.home() / ".codecontext"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"

DEFAULT_MIN_SIMILARITY = 0.35
DEFAULT_TOKEN_BUDGET = 2000


@dataclass
class RetrievalConfig:
    fusion: FusionOptions = field(default_factory=FusionOptions)
    min_similarity: float = DEFAULT_MIN_SIMILARITY
    default_token_budget: int = DEFAULT_TOKEN_BUDGET


def ensure_base_dir() -> None:
    """Create the config directory if needed."""
    BASE_DIR.mkdir(parents=True, exist_ok=True)


# ------------------------------------------------------------------
# Raw TOML access
# ------------------------------------------------------------------

def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections)."""
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", CONFIG_FILE, exc)
        return {}


def _save_full_config(config: Dict[str, Any]) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    try:
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w") as f:
            toml.dump(config, f)
        return True
    except OSError as exc:
        logger.error("Could not write config file %s: %s", CONFIG_FILE, exc)
        return False


def save_config(section: str, values: Dict[str, Any]) -> bool:
    """Replace one section of the config file.

    Preserves the other sections.

    Args:
        section: Section name, e.g. ``"embeddings"``.
        values: New contents of that section.

    Returns:
        True if saved successfully, False otherwise.
    """
    config = load_full_config()
    config[section] = dict(values)
    return _save_full_config(config)


def clear_section(section: str) -> bool:
    """Remove *section* from the config file, resetting it to defaults."""
    config = load_full_config()
    config.pop(section, None)
    return _save_full_config(config)


# ------------------------------------------------------------------
# Typed sections
# ------------------------------------------------------------------

def _known_fields(cls: Any, values: Dict[str, Any], section: str) -> Dict[str, Any]:
    names = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(values) - names)
    if unknown:
        logger.warning("Ignoring unknown [%s] keys: %s", section, ", ".join(unknown))
    return {k: v for k, v in values.items() if k in names}


def load_embedding_config() -> EmbeddingConfig:
    """Build an :class:`EmbeddingConfig` from the ``[embeddings]`` section."""
    section = dict(load_full_config().get("embeddings", {}))
    config = EmbeddingConfig(**_known_fields(EmbeddingConfig, section, "embeddings"))

    if not config.api_key and config.provider in REMOTE_PROVIDERS:
        env_name = REMOTE_PROVIDERS[config.provider]["api_key_env"]
        config.api_key = os.environ.get(env_name) or None
    return config


def load_retrieval_config() -> RetrievalConfig:
    """Build a :class:`RetrievalConfig` from the ``[retrieval]`` section."""
    section = dict(load_full_config().get("retrieval", {}))
    min_similarity = float(section.pop("min_similarity", DEFAULT_MIN_SIMILARITY))
    token_budget = int(section.pop("default_token_budget", DEFAULT_TOKEN_BUDGET))
    section.pop("pinned", None)
    values = _known_fields(FusionOptions, section, "retrieval")
    return RetrievalConfig(
        fusion=FusionOptions(pinned=frozenset(values), **values),
        min_similarity=min_similarity,
        default_token_budget=token_budget,
    )
