"""Helpers for reading and writing modal configuration files on disk."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from modal_builder.models import ConfigFormatError, ModalConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "modal_config.json"
CONFIGS_ROOT = Path("modal_configs")


def config_key_for(name: str) -> str:
    """Return a directory-safe key derived from a modal name."""

    key = re.sub(r"[^a-z0-9]+", "_", name.strip().lower()).strip("_")
    return key or "modal"


def discover_local_configs(root: Path = CONFIGS_ROOT) -> Dict[str, Path]:
    """Return a mapping of ``config_key -> path`` for local config files."""

    configs: Dict[str, Path] = {}
    if root.exists():
        for entry in sorted(root.iterdir()):
            if not entry.is_dir():
                continue
            config_path = entry / CONFIG_FILENAME
            if config_path.exists():
                configs[entry.name] = config_path
    return configs


def load_local_configs(
    root: Path = CONFIGS_ROOT,
) -> Tuple[Dict[str, ModalConfig], Dict[str, Path], Dict[str, str]]:
    """Load every local config, returning configs, their paths and load errors."""

    configs: Dict[str, ModalConfig] = {}
    sources: Dict[str, Path] = {}
    errors: Dict[str, str] = {}

    for config_key, path in discover_local_configs(root).items():
        try:
            with path.open("r", encoding="utf-8") as handle:
                configs[config_key] = ModalConfig.from_json(handle.read())
        except (OSError, ConfigFormatError) as exc:
            logger.warning("Skipping modal config %s: %s", path, exc)
            errors[config_key] = str(exc)
            continue
        sources[config_key] = path

    return configs, sources, errors


def ensure_config_directory(config_key: str, root: Path = CONFIGS_ROOT) -> Path:
    target_dir = root / config_key
    target_dir.mkdir(parents=True, exist_ok=True)
    return target_dir


def local_config_path(
    config_key: str, sources: Mapping[str, Path], root: Path = CONFIGS_ROOT
) -> Path:
    """Return the on-disk path for ``config_key`` using known sources."""

    if config_key in sources:
        return sources[config_key]
    return ensure_config_directory(config_key, root) / CONFIG_FILENAME


def save_local_config(
    config_key: str,
    config: ModalConfig,
    sources: Optional[Mapping[str, Path]] = None,
    root: Path = CONFIGS_ROOT,
) -> Path:
    """Write ``config`` to its local file and return the path used."""

    target_path = local_config_path(config_key, sources or {}, root)
    target_path.parent.mkdir(parents=True, exist_ok=True)
    with target_path.open("w", encoding="utf-8") as handle:
        handle.write(config.to_json(indent=2))
        handle.write("\n")
    logger.info("Saved modal config %r to %s", config.name, target_path)
    return target_path


def resolve_remote_config_path(base_path: str, config_key: str) -> str:
    """Return the remote path for ``config_key`` using ``base_path`` template."""

    if "{config_key}" in base_path:
        return base_path.format(config_key=config_key)
    if "{modal}" in base_path:
        return base_path.format(modal=config_key)
    if base_path.endswith(".json"):
        return base_path
    return f"{base_path.rstrip('/')}/{config_key}/{CONFIG_FILENAME}"
