"""
Revision Engine Thresholds
==========================
Centralized tuning values for the diff engine, paragraph alignment and the
live change tracker.

Configuration can be set via:
1. Environment variables (REV_MOVE_THRESHOLD=0.9)
2. Config file (revision_config.json, or the path in REV_CONFIG_FILE)
3. Direct API calls (config.set('tracking.coalesce_window_ms', 1500))
"""

import os
import json
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, Optional

from config_logging import get_logger

logger = get_logger('revision_engine.config')

# Default configuration path
CONFIG_FILE = Path(__file__).parent.parent / "revision_config.json"


@dataclass
class DiffConfig:
    """Static diff engine configuration."""
    diff_timeout: float = 2.0          # seconds for the Myers search; 0 = unbounded
    move_threshold: float = 0.85       # normalized similarity for a moved chunk
    min_move_chars: int = 20           # shorter chunks never count as moves
    replacement_distance: int = 5      # delete/insert gap for grouping
    replacement_similarity: float = 0.4
    short_text_chars: int = 20         # both sides shorter than this always group
    replacement_confidence: float = 0.9
    insertion_confidence: float = 1.0
    stylistic_threshold: float = 0.85  # above this a change is also stylistic
    high_confidence: float = 0.85      # stats bucket


@dataclass
class AlignmentConfig:
    """Paragraph alignment and document-level metrics."""
    match_threshold: float = 0.6
    minor_threshold: float = 0.9
    moderate_threshold: float = 0.7
    major_threshold: float = 0.3
    side_by_side_percent: float = 30.0  # changed-char percent for side-by-side view


@dataclass
class TrackingConfig:
    """Live change tracker configuration."""
    coalesce_window_ms: int = 3000
    deletion_distance: int = 5
    max_deletion_merge_chars: int = 10
    max_remembered_ids: int = 10_000   # finished change ids kept for accept/reject answers
    default_author_id: str = "user"
    default_author_name: str = "You"


@dataclass
class EngineConfig:
    """Master revision engine configuration."""
    diff: DiffConfig = field(default_factory=DiffConfig)
    alignment: AlignmentConfig = field(default_factory=AlignmentConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)


# Global configuration instance
_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    """Get the global engine configuration."""
    global _config
    if _config is None:
        _config = _load_config()
    return _config


def _config_path() -> Path:
    override = os.environ.get('REV_CONFIG_FILE')
    return Path(override) if override else CONFIG_FILE


def _load_config() -> EngineConfig:
    """Load configuration from file and environment."""
    config = EngineConfig()

    path = _config_path()
    if path.exists():
        try:
            with open(path, 'r', encoding='utf-8') as f:
                file_config = json.load(f)
            _apply_dict_to_config(config, file_config)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Could not load config file {path}: {e}")

    _apply_env_to_config(config)

    return config


def _apply_dict_to_config(config: EngineConfig, data: Dict[str, Any]):
    """Apply dictionary values to config object."""
    for section_name, section_data in data.items():
        if hasattr(config, section_name) and isinstance(section_data, dict):
            section = getattr(config, section_name)
            for key, value in section_data.items():
                if hasattr(section, key):
                    setattr(section, key, value)
                else:
                    logger.warning(f"Ignoring unknown config key {section_name}.{key}")


def _apply_env_to_config(config: EngineConfig):
    """Apply environment variables to config."""
    env_mappings = {
        'REV_DIFF_TIMEOUT': ('diff', 'diff_timeout', float),
        'REV_MOVE_THRESHOLD': ('diff', 'move_threshold', float),
        'REV_MIN_MOVE_CHARS': ('diff', 'min_move_chars', int),
        'REV_REPLACEMENT_DISTANCE': ('diff', 'replacement_distance', int),
        'REV_REPLACEMENT_SIMILARITY': ('diff', 'replacement_similarity', float),
        'REV_STYLISTIC_THRESHOLD': ('diff', 'stylistic_threshold', float),
        'REV_ALIGNMENT_THRESHOLD': ('alignment', 'match_threshold', float),
        'REV_COALESCE_WINDOW_MS': ('tracking', 'coalesce_window_ms', int),
        'REV_DELETION_DISTANCE': ('tracking', 'deletion_distance', int),
        'REV_MAX_REMEMBERED_IDS': ('tracking', 'max_remembered_ids', int),
        'REV_DEFAULT_AUTHOR': ('tracking', 'default_author_id', str),
    }

    for env_var, (section, key, converter) in env_mappings.items():
        value = os.environ.get(env_var)
        if value is not None:
            try:
                section_obj = getattr(config, section)
                setattr(section_obj, key, converter(value))
            except (ValueError, AttributeError) as e:
                logger.warning(f"Invalid env var {env_var}={value}: {e}")


def get(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by dot-notation key.

    Example: get('diff.move_threshold') -> 0.85
    """
    obj = get_config()
    for part in key.split('.'):
        if hasattr(obj, part):
            obj = getattr(obj, part)
        else:
            return default

    return obj


def set(key: str, value: Any):
    """
    Set a configuration value by dot-notation key.

    Example: set('tracking.coalesce_window_ms', 1500)
    """
    config = get_config()
    parts = key.split('.')

    if len(parts) != 2:
        raise ValueError(f"Key must be in format 'section.key': {key}")

    section_name, attr_name = parts

    if not hasattr(config, section_name):
        raise ValueError(f"Unknown config section: {section_name}")
    section = getattr(config, section_name)
    if not hasattr(section, attr_name):
        raise ValueError(f"Unknown config key: {attr_name}")
    setattr(section, attr_name, value)


def save_config(path: Optional[Path] = None):
    """Save current configuration to file."""
    path = Path(path) if path else _config_path()
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(asdict(get_config()), f, indent=2)


def reset_config():
    """Reset configuration to defaults."""
    global _config
    _config = EngineConfig()
