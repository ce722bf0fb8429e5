"""Shared JSON configuration storage."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def load_config_data(config_path: Path) -> dict[str, Any]:
    """Load configuration JSON data from disk."""
    if not config_path.exists():
        return {}
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        logger.warning("Ignoring unreadable config file %s", config_path)
        return {}
    if isinstance(data, dict):
        return data
    return {}


def save_config_data(config_path: Path, data: dict[str, Any]) -> None:
    """Persist configuration JSON data to disk."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(
        json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8"
    )
