"""Configuration loading for photogen.

Settings come from a YAML file merged over the defaults below. The COLMAP
executable can also be set through the ``COLMAP_PATH`` environment variable.
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"

DEFAULT_CONFIG: Dict = {
    "engine": {
        "name": "colmap",
        "colmap_executable": "colmap",
        "use_gpu": True,
        "workspace_dir": None,
        "keep_workspace": False,
        "min_image_size": 64,
    },
    "export": {
        "enabled": True,
        "format": "obj",
        "path": None,
    },
    "logging": {
        "level": "INFO",
        "file": None,
    },
    "progress": {
        "show_bar": True,
    },
}


def _merge(base: Dict, override: Dict) -> Dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file. If None, ``config.yaml`` at
            the repository root is used when present.

    Returns:
        Configuration dictionary with defaults filled in

    Raises:
        FileNotFoundError: If an explicit config path does not exist
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH if DEFAULT_CONFIG_PATH.exists() else None
    elif not Path(config_path).exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    user_config = {}
    if config_path is not None:
        with open(config_path, "r") as f:
            user_config = yaml.safe_load(f) or {}
        logger.debug(f"Loaded configuration from {config_path}")

    config = _merge(DEFAULT_CONFIG, user_config)

    colmap_path = os.environ.get("COLMAP_PATH")
    if colmap_path:
        config["engine"]["colmap_executable"] = colmap_path

    return config


def resolve_export_path(config: Dict, output_filename: Union[str, Path]) -> Optional[Path]:
    """Work out where the auxiliary model export goes.

    An explicit ``export.path`` wins. Otherwise the export sits next to the
    output model with the ``export.format`` extension. Returns None when
    export is disabled or would overwrite the output model.
    """
    export = config.get("export", {})
    if not export.get("enabled", True):
        return None

    output_path = Path(output_filename)
    if export.get("path"):
        export_path = Path(export["path"])
    else:
        fmt = str(export.get("format") or "obj").lstrip(".")
        export_path = output_path.with_suffix(f".{fmt}")

    if export_path.resolve() == output_path.resolve():
        logger.debug(f"Export path matches output model, skipping export: {export_path}")
        return None

    return export_path


def setup_logging(config: Dict, verbose: bool = False) -> None:
    """Configure the root logger from the ``logging`` section."""
    level = logging.DEBUG if verbose else getattr(
        logging, str(config["logging"].get("level", "INFO")).upper(), logging.INFO
    )
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
        ],
    )

    log_file = config["logging"].get("file")
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(file_handler)
