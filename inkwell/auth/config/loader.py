"""Configuration loading and processing."""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..exceptions import ConfigurationError
from ..utils import mask_sensitive_data
from .schema import AuthConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "inkwell.config.yaml"


class AuthConfigLoader:
    """Loads and validates authentication configuration."""

    ENV_VAR_PATTERN = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?:(?P<op>:-|:\?)(?P<arg>[^}]*))?\}")

    @classmethod
    def load_auth_config(cls, config_path: str | Path) -> AuthConfig:
        """Load authentication configuration from YAML file.

        Args:
            config_path: Path to the inkwell.config.yaml file

        Returns:
            Validated AuthConfig instance

        Raises:
            ConfigurationError: If configuration is invalid or cannot be loaded
        """
        path = Path(config_path)
        try:
            raw_config = yaml.safe_load(path.read_text())
        except FileNotFoundError as e:
            raise ConfigurationError(f"Configuration file not found: {path}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}") from e

        if not raw_config:
            raise ConfigurationError("Configuration file is empty")

        auth_config = raw_config.get("auth") if isinstance(raw_config, dict) else None
        if not auth_config:
            raise ConfigurationError("No 'auth' section found in configuration")
        if not isinstance(auth_config, dict):
            raise ConfigurationError("The 'auth' section must be a mapping")

        return cls.from_dict(auth_config)

    @classmethod
    def from_dict(cls, auth_config: dict[str, Any]) -> AuthConfig:
        """Validate an already parsed ``auth`` section.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        processed_config = cls._substitute_env_vars(auth_config)
        logger.debug(f"Loaded auth configuration: {mask_sensitive_data(processed_config)}")

        try:
            return AuthConfig(**processed_config)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid auth configuration: {e}") from e

    @classmethod
    def _substitute_env_vars(cls, config: Any) -> Any:
        """Recursively expand ``${...}`` references in every string of ``config``.

        - ``${NAME}``: the variable must be set
        - ``${NAME:-fallback}``: ``fallback`` when unset
        - ``${NAME:?hint}``: must be set, ``hint`` goes into the error
        """
        match config:
            case dict():
                return {key: cls._substitute_env_vars(value) for key, value in config.items()}
            case list():
                return [cls._substitute_env_vars(item) for item in config]
            case str():
                return cls.ENV_VAR_PATTERN.sub(cls._expand_reference, config)
            case _:
                return config

    @staticmethod
    def _expand_reference(match: re.Match) -> str:
        name = match.group("name")
        value = os.environ.get(name)
        if value is not None:
            return value

        match match.group("op"):
            case ":-":
                return match.group("arg")
            case ":?":
                raise ConfigurationError(f"Required environment variable '{name}' not set: {match.group('arg')}")
            case _:
                raise ConfigurationError(f"Environment variable '{name}' not set")

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Path to inkwell.config.yaml in the current directory."""
        return Path.cwd() / DEFAULT_CONFIG_FILE
