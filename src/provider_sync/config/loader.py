"""Configuration loader for JSON/YAML editor configuration files."""

import json
from pathlib import Path
from typing import Dict, Any, Union

import yaml
from pydantic import ValidationError

from .schema import UIConfig
from ..utils.logging import get_logger


class ConfigurationError(Exception):
    """Raised when configuration loading, saving or editing fails."""
    pass


class ConfigLoader:
    """Loads, validates and saves the editor configuration."""

    def __init__(self):
        """Initialize the loader."""
        self.logger = get_logger(self.__class__.__name__)

    def load_from_file(self, file_path: Union[str, Path]) -> UIConfig:
        """Load configuration from JSON or YAML file.

        Args:
            file_path: Path to configuration file

        Returns:
            Validated UIConfig object

        Raises:
            ConfigurationError: If file cannot be loaded or validated
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise ConfigurationError(f"Configuration file not found: {file_path}")

        self.logger.info("Loading configuration from file", file_path=str(file_path))

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                if file_path.suffix.lower() in ['.yaml', '.yml']:
                    data = yaml.safe_load(f)
                elif file_path.suffix.lower() == '.json':
                    data = json.load(f)
                else:
                    raise ConfigurationError(f"Unsupported file format: {file_path.suffix}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML format: {e}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON format: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration: {e}")

        config = self.load_from_dict(data or {})

        self.logger.info(
            "Configuration loaded successfully",
            providers_count=len(config.providers),
            models_count=len(config.models)
        )
        return config

    def load_from_dict(self, data: Dict[str, Any]) -> UIConfig:
        """Load configuration from dictionary.

        Args:
            data: Configuration data as dictionary

        Returns:
            Validated UIConfig object
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration root must be an object")

        try:
            return UIConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    def save_to_file(self, config: UIConfig, file_path: Union[str, Path]) -> None:
        """Save configuration to a JSON or YAML file.

        Args:
            config: Configuration to save
            file_path: Output file path
        """
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        data = self.to_dict(config)

        with open(file_path, 'w', encoding='utf-8') as f:
            if file_path.suffix.lower() in ['.yaml', '.yml']:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            else:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.write("\n")

        self.logger.info("Configuration saved to file", file_path=str(file_path))

    @staticmethod
    def to_dict(config: UIConfig) -> Dict[str, Any]:
        """Serialize configuration using the editor's camelCase field names."""
        return config.model_dump(by_alias=True, mode="json")
