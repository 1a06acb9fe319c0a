#!/usr/bin/env python3
"""
Configuration loader and validator for the todo ↔ beads sync system.

Loads the optional sync_config.yaml over built-in defaults, applies
environment overrides, and reports every misconfiguration at once.
"""

import os
import sys
import copy
from pathlib import Path
from typing import Dict, Any, Optional
import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid."""
    pass


DEFAULTS: Dict[str, Any] = {
    'beads': {
        'command': 'bd',
        'data_dir': '.beads',
        'timeout': None,
        'cwd': None,
    },
    'mapping': {
        'file': 'opencode-todo-mapping.json',
        'lock_timeout': 30,
    },
    'session': {
        'title_prefix': 'OpenCode Session',
        'id_length': 8,
        'epic_priority': 2,
        'description_template': 'Tracks todos for OpenCode session {session_id}',
    },
    'reasons': {
        'completed': 'Completed',
        'cancelled': 'Cancelled in OpenCode',
        'removed': 'Todo removed from OpenCode',
    },
    'logging': {
        'debug': False,
        'console': False,
        'dir': None,
    },
}


def _merge_configs(base: Dict, override: Dict) -> Dict:
    """Deep merge two configuration dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_configs(result[key], value)
        else:
            result[key] = value

    return result


class SyncConfig:
    """Todo ↔ beads synchronization configuration."""

    def __init__(self, config_path: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration loader.

        Args:
            config_path: Path to sync_config.yaml (default: .sync/config/sync_config.yaml)
            overrides: Values merged last, used by tests and embedding hosts
        """
        if config_path is None:
            current_dir = Path.cwd()
            while current_dir != current_dir.parent:
                if (current_dir / '.sync').exists():
                    config_path = current_dir / '.sync' / 'config' / 'sync_config.yaml'
                    break
                current_dir = current_dir.parent

        self.config_path = Path(config_path) if config_path else None
        self.config: Dict[str, Any] = copy.deepcopy(DEFAULTS)
        self._load(overrides or {})

    def _load(self, overrides: Dict[str, Any]) -> None:
        """Load YAML over defaults, then environment and explicit overrides."""
        if self.config_path is not None and self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(
                    f"Invalid YAML in configuration file: {self.config_path}\n"
                    f"Error: {e}"
                )
            except OSError as e:
                raise ConfigError(
                    f"Failed to read configuration file: {self.config_path}\n"
                    f"Error: {e}"
                )

            if not isinstance(data, dict):
                raise ConfigError(f"Configuration root must be a mapping: {self.config_path}")

            self.config = _merge_configs(self.config, data)

        self._substitute_env_vars()
        self.config = _merge_configs(self.config, overrides)
        self._validate()

    def _substitute_env_vars(self) -> None:
        """Apply environment overrides."""
        beads = self.config.setdefault('beads', {})
        mapping = self.config.setdefault('mapping', {})
        logging_cfg = self.config.setdefault('logging', {})

        if os.getenv('BD_COMMAND'):
            beads['command'] = os.environ['BD_COMMAND']
        if os.getenv('BEADS_DIR'):
            beads['data_dir'] = os.environ['BEADS_DIR']
        if os.getenv('TODO_SYNC_MAPPING_FILE'):
            mapping['file'] = os.environ['TODO_SYNC_MAPPING_FILE']
        if os.getenv('DEBUG', '').lower() in ('true', '1', 'yes'):
            logging_cfg['debug'] = True

    def _validate(self) -> None:
        """Validate configuration values."""
        errors = []

        command = self.get('beads.command')
        if not command or not str(command).strip():
            errors.append("beads.command must be a non-empty string")

        timeout = self.get('beads.timeout')
        if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
            errors.append("beads.timeout must be a positive number or null")

        if not self.get('mapping.file'):
            errors.append("mapping.file must be set")

        lock_timeout = self.get('mapping.lock_timeout')
        if not isinstance(lock_timeout, (int, float)) or lock_timeout <= 0:
            errors.append("mapping.lock_timeout must be a positive number")

        epic_priority = self.get('session.epic_priority')
        if not isinstance(epic_priority, int) or not 0 <= epic_priority <= 4:
            errors.append("session.epic_priority must be an integer between 0 and 4")

        id_length = self.get('session.id_length')
        if not isinstance(id_length, int) or id_length < 1:
            errors.append("session.id_length must be a positive integer")

        # Recovery tells cancelled from completed by this word
        cancelled = str(self.get('reasons.cancelled', ''))
        completed = str(self.get('reasons.completed', ''))
        if 'Cancelled' not in cancelled:
            errors.append(
                f"reasons.cancelled must contain 'Cancelled' (got: '{cancelled}')\n"
                f"  → Recovery uses it to tell cancelled todos from completed ones"
            )
        if 'Cancelled' in completed:
            errors.append(f"reasons.completed must not contain 'Cancelled' (got: '{completed}')")

        if errors:
            error_msg = "Configuration validation failed:\n\n" + "\n".join(f"  • {e}" for e in errors)
            raise ConfigError(error_msg)

    @property
    def mapping_path(self) -> Path:
        """Location of the mapping document."""
        mapping_file = Path(self.get('mapping.file'))
        if mapping_file.is_absolute():
            return mapping_file
        return Path(self.get('beads.data_dir', '.beads')) / mapping_file

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key.

        Args:
            key: Dot-notation key (e.g., 'beads.command', 'reasons.removed')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

            if value is None:
                return default

        return value

    def __getitem__(self, key: str) -> Any:
        """Get configuration section by key."""
        return self.config[key]

    def __repr__(self) -> str:
        return f"SyncConfig(path={self.config_path}, mapping={self.mapping_path})"


def load_config(config_path: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None) -> SyncConfig:
    """
    Load and validate sync configuration.

    Args:
        config_path: Path to sync_config.yaml (auto-detected if None)
        overrides: Values applied after the file and environment

    Returns:
        Validated SyncConfig instance

    Raises:
        ConfigError: If configuration is invalid
    """
    return SyncConfig(config_path, overrides=overrides)


if __name__ == '__main__':
    try:
        config = load_config()
        print(f"✓ Configuration valid: {config.config_path or '(defaults)'}")
        print(f"  bd command: {config.get('beads.command')}")
        print(f"  Mapping: {config.mapping_path}")
    except ConfigError as e:
        print(f"✗ Configuration error:\n{e}", file=sys.stderr)
        sys.exit(1)
