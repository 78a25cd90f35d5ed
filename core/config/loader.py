"""Configuration loader - loads and merges provider config files."""

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml

from core.config.exceptions import (
    ConfigNotFoundError,
    ConfigParseError,
    ConfigValidationError,
)
from core.config.merger import deep_merge

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "secrets.yaml"

ENV_PATTERN = re.compile(r"\$\{env:([^}]+)\}")


def expand_env(value: Any, environ: Optional[dict] = None) -> Any:
    """
    Recursively replace ${env:VAR} placeholders from the process environment.

    Raises:
        ConfigValidationError: If a referenced variable is not set
    """
    environ = os.environ if environ is None else environ

    if isinstance(value, dict):
        return {k: expand_env(v, environ) for k, v in value.items()}
    elif isinstance(value, list):
        return [expand_env(item, environ) for item in value]
    elif isinstance(value, str):

        def replace_match(match):
            var = match.group(1)
            if var not in environ:
                raise ConfigValidationError(
                    f"Environment variable '{var}' referenced in config is not set"
                )
            return environ[var]

        return ENV_PATTERN.sub(replace_match, value)
    else:
        return value


class ConfigLoader:
    """
    Loads the provider configuration.

    Load order (later wins):
        1. secrets.yaml (base provider definitions)
        2. secrets.{env}.yaml next to it (optional environment overrides)
        3. Expand ${env:VAR} placeholders

    File format:
        default_provider: vault
        providers:
          vault:
            type: vault
            address: https://vault.internal:8200
            token: ${env:VAULT_TOKEN}
          aws:
            type: aws
            region: us-east-1

    Usage:
        loader = ConfigLoader("secrets.yaml")
        config = loader.load(environment="prod")
    """

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else Path(DEFAULT_CONFIG_FILE)

    def _load_yaml(self, path: Path) -> dict:
        """Load and parse a YAML file."""
        if not path.exists():
            raise ConfigNotFoundError(f"Config file not found: {path}", path)

        try:
            with open(path) as f:
                content = yaml.safe_load(f) or {}
                logger.debug(f"Loaded config: {path}")
        except yaml.YAMLError as e:
            raise ConfigParseError(f"Invalid YAML in {path}: {e}", path) from e

        if not isinstance(content, dict):
            raise ConfigParseError(f"Top level of {path} must be a mapping", path)
        return content

    def environment_path(self, environment: str) -> Path:
        """secrets.yaml + "prod" -> secrets.prod.yaml in the same directory."""
        path = self.config_path
        return path.with_name(f"{path.stem}.{environment}{path.suffix or '.yaml'}")

    def load(self, environment: Optional[str] = None) -> dict:
        """
        Load the complete provider configuration.

        Args:
            environment: Optional environment (e.g., "prod", "staging")

        Returns:
            Merged, expanded and validated configuration dict
        """
        config = self._load_yaml(self.config_path)
        logger.info(f"Loaded provider config: {self.config_path}")

        if environment:
            env_path = self.environment_path(environment)
            if env_path.exists():
                config = deep_merge(config, self._load_yaml(env_path))
                logger.info(f"Merged environment config: {env_path}")

        config = expand_env(config)
        self.validate(config)
        return config

    @staticmethod
    def validate(config: dict) -> None:
        """
        Check the shape of a loaded configuration.

        Raises:
            ConfigValidationError: On missing or malformed sections
        """
        providers = config.get("providers")
        if not isinstance(providers, dict) or not providers:
            raise ConfigValidationError("Config must define at least one entry under 'providers'")

        for name, entry in providers.items():
            if not isinstance(entry, dict):
                raise ConfigValidationError(f"Provider '{name}' must be a mapping", provider=name)
            if not entry.get("type"):
                raise ConfigValidationError(f"Provider '{name}' is missing 'type'", provider=name)

        default = config.get("default_provider")
        if default is not None and default not in providers:
            raise ConfigValidationError(
                f"default_provider '{default}' is not a configured provider. "
                f"Available: {', '.join(providers)}"
            )
