"""TOML configuration loader for the classification core.

Loads engine defaults from defaults.toml shipped in the package, or from a
caller-supplied file with the same layout.
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from catalai.schemas.config import (
    AnalysisConfig,
    EngineConfig,
    ProviderConfig,
    QualityThresholds,
    RoutingThresholds,
    StorageConfig,
    ValidationConfig,
)

logger = logging.getLogger(__name__)

# Default config directory relative to the catalai package
CONFIG_DIR = Path(__file__).parent / "config"

_SECTIONS: dict[str, type] = {
    "routing": RoutingThresholds,
    "quality": QualityThresholds,
    "analysis": AnalysisConfig,
    "validation": ValidationConfig,
    "provider": ProviderConfig,
    "storage": StorageConfig,
}


def load_engine_config(config_path: Path | None = None) -> EngineConfig:
    """Load engine configuration from a TOML file.

    Sections missing from the file fall back to their defaults.

    Args:
        config_path: Path to a TOML file. Defaults to catalai/config/defaults.toml.

    Returns:
        EngineConfig populated from the file.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If a section is not a table or holds invalid values.
    """
    path = config_path or CONFIG_DIR / "defaults.toml"
    if not path.exists():
        raise FileNotFoundError(f"Engine config not found: {path}")

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    sections: dict[str, object] = {}
    for name, model in _SECTIONS.items():
        section = raw.get(name, {})
        if not isinstance(section, dict):
            raise ValueError(f"[{name}] in {path} must be a table")
        try:
            sections[name] = model(**section)
        except PydanticValidationError as e:
            raise ValueError(f"Invalid [{name}] section in {path}: {e}") from e

    categories_section = raw.get("categories", {})
    if not isinstance(categories_section, dict):
        raise ValueError(f"[categories] in {path} must be a table")
    order = categories_section.get("order")
    if order is not None:
        if not isinstance(order, list) or not order or not all(isinstance(c, str) for c in order):
            raise ValueError(f"[categories] order in {path} must be a non-empty list of strings")
        sections["categories"] = tuple(order)

    logger.debug("Loaded engine config from %s", path)
    return EngineConfig(**sections)


def resolve_state_dir(config: EngineConfig, override: Path | None = None) -> Path:
    """Directory holding matrix versions, suggestions and the feedback db."""
    return (override or Path(config.storage.state_dir)).expanduser()


def feedback_db_path(config: EngineConfig, state_dir: Path) -> Path:
    """Feedback database path, relative paths anchored at the state dir."""
    path = Path(config.storage.feedback_db).expanduser()
    return path if path.is_absolute() else state_dir / path
