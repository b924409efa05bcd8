"""YAML configuration loader for Voice2Action."""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "voice2action.yaml"

DEFAULTS: Dict[str, Any] = {
    "openai": {
        "base_url": "https://api.openai.com/v1",
        "transcription_model": "whisper-1",
        "chat_model": "gpt-4-turbo",
    },
    "transcription": {
        "pool_size": 5,
        "acquire_timeout_seconds": 5.0,
        "health_check_interval_seconds": 60.0,
        "request_timeout_seconds": 15.0,
        "cache_ttl_seconds": 3600,
        "cache_confidence_threshold": 0.7,
        "max_retries": 2,
        "batch_concurrency": 3,
        "batch_delay_seconds": 0.1,
        "stream_min_bytes": 64000,
        "stream_vad": {
            "enabled": True,
            "threshold": 0.02,
            "smoothing": 0.95,
            "silence_seconds": 1.5,
            "max_segment_seconds": 30.0,
        },
    },
    "parsing": {
        "max_retries": 2,
        "timeout_seconds": 15.0,
        "temperature": 0.1,
        "max_tokens": 2000,
        "prompt_cache_ttl_seconds": 300,
    },
    "context": {
        "cache_ttl_seconds": 300,
        "max_recent_tasks": 20,
        "max_recent_channels": 15,
        "max_team_members": 50,
        "organization_name": "CEO Communication Platform",
    },
    "logging": {
        "level": "INFO",
        "file_path": "data/logs/voice2action.log",
        "console_output": True,
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class VoiceCommandConfig:
    """Voice2Action configuration loader.

    Values from the YAML file are merged over built-in defaults, so a config
    file only needs the keys it changes.
    """

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, uses voice2action.yaml
                        in the current directory when present, else defaults only.
        """
        if config_path is None and Path(DEFAULT_CONFIG_FILE).exists():
            config_path = DEFAULT_CONFIG_FILE

        self.config_file = Path(config_path) if config_path else None

        if self.config_file is None:
            logger.info("No configuration file found, using defaults")
            self.config = copy.deepcopy(DEFAULTS)
            return

        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        logger.info(f"Loading configuration from: {self.config_file}")
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a mapping")

        config = _merge(DEFAULTS, loaded)
        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        log_path = config.get('logging', {}).get('file_path')
        if log_path and not os.path.isabs(log_path):
            config['logging']['file_path'] = str(config_dir / log_path)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'parsing.timeout_seconds').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value = self.config
        for key in key_path.split('.'):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key_path: Dot-separated path to config value (e.g., 'openai.chat_model')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        for key in keys[:-1]:
            if not isinstance(config_dict.get(key), dict):
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_openai_api_key(self) -> str:
        """API key from the config file or OPENAI_API_KEY - raises if neither is set."""
        api_key = self.get('openai.api_key') or os.environ.get('OPENAI_API_KEY')
        if not api_key:
            raise ValueError("OpenAI API key not configured (set openai.api_key or OPENAI_API_KEY)")
        return api_key
